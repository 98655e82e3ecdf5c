"""API tests for /run and the script/run persistence endpoints."""


def test_run_returns_output_and_diagnostics(client):
    r = client.post('/run', json={'code': 'let x 2\nprint x*21\nwhat'})
    assert r.status_code == 200
    body = r.json()
    assert body['output'] == '42\n'
    assert [d['code'] for d in body['diagnostics']] == ['UNKNOWN_COMMAND']
    assert body['errors'] is None
    assert isinstance(body['duration_ms'], int)


def test_run_rejects_missing_code(client):
    r = client.post('/run', json={'settings': {}})
    assert r.status_code == 422


def test_save_list_get_and_run_script(client):
    r = client.post('/save', json={'title': 'greet', 'code': 'func hi print "hi"\ncall hi'})
    assert r.status_code == 200
    sid = r.json()['script_id']

    scripts = client.get('/scripts').json()
    assert any(s['script_id'] == sid and s['title'] == 'greet' for s in scripts)

    one = client.get(f'/scripts/{sid}').json()
    assert one['code_text'].startswith('func hi')

    run = client.post(f'/scripts/{sid}/run')
    assert run.status_code == 200
    assert run.json()['output'] == 'hi\n'

    stats = client.get(f'/stats?script_id={sid}').json()
    assert len(stats) == 1
    assert stats[0]['steps'] == 3
    assert stats[0]['output_lines'] == 1
    assert stats[0]['diagnostics'] == []


def test_run_with_script_id_records_diagnostic_codes(client):
    sid = client.post('/save', json={'title': 't', 'code': 'print 1'}).json()['script_id']
    client.post('/run', json={'code': 'call nope', 'script_id': sid})
    runs = client.get(f'/stats?script_id={sid}').json()
    assert runs[0]['diagnostics'] == ['UNDEFINED_FUNCTION']
    assert runs[0]['error_code'] is None


def test_unknown_script_is_404(client):
    assert client.get('/scripts/999').status_code == 404
    assert client.post('/scripts/999/run').status_code == 404


def test_stats_lists_all_runs(client):
    client.post('/run', json={'code': 'print 1'})
    client.post('/run', json={'code': 'print 2'})
    runs = client.get('/stats').json()
    assert len(runs) == 2
    assert all(r['script_id'] is None for r in runs)
