"""Diagnostics and edge cases: every problem is reported and the run goes on."""

from backend.midlang.interpreter import Interpreter, find_action_start, parse_loop_count


def test_unknown_command_reports_and_continues():
    it = Interpreter()
    res = it.run('let a 1\nfrobnicate x\nprint a')
    assert res['output'] == '1\n'
    assert len(res['diagnostics']) == 1
    diag = res['diagnostics'][0]
    assert diag['code'] == 'UNKNOWN_COMMAND'
    assert diag['message'] == 'Unknown command: frobnicate'
    assert diag['line'] == 2
    assert diag['context']['line_text'] == 'frobnicate x'
    assert it.env.snapshot() == {'variables': {'a': 1}, 'functions': {}}


def test_call_undefined_function_single_diagnostic_no_state_change():
    it = Interpreter()
    it.execute_line('let a 1')
    before = it.env.snapshot()
    it.execute_line('call missing')
    assert it.env.snapshot() == before
    assert len(it.diagnostics) == 1
    assert it.diagnostics[0]['code'] == 'UNDEFINED_FUNCTION'
    assert it.diagnostics[0]['message'] == 'Function missing not defined'


def test_evaluation_failure_prints_nan_and_reports():
    it = Interpreter()
    res = it.run('print 1 +\nprint "still running"')
    assert res['output'].splitlines() == ['NaN', 'still running']
    diag = res['diagnostics'][0]
    assert diag['code'] == 'EVALUATION_ERROR'
    assert diag['message'] == 'Error evaluating expression: 1 +'
    assert diag['hint']


def test_failed_let_binds_nan():
    it = Interpreter()
    res = it.run('let x y*2\nprint x')
    assert res['output'] == 'NaN\n'
    assert len(res['diagnostics']) == 1


def test_division_by_zero_is_reported():
    it = Interpreter()
    res = it.run('print 1/0')
    assert res['output'] == 'NaN\n'
    assert 'Division by zero' in res['diagnostics'][0]['hint']


def test_let_syntax_errors():
    it = Interpreter()
    res = it.run('let\nlet 1x 5\nlet x')
    codes = [d['code'] for d in res['diagnostics']]
    assert codes == ['SYNTAX_ERROR'] * 3
    assert it.env.snapshot()['variables'] == {}


def test_func_and_call_syntax_errors():
    it = Interpreter()
    res = it.run('func\nfunc 9lives print 1\nfunc empty\ncall')
    assert [d['code'] for d in res['diagnostics']] == ['SYNTAX_ERROR'] * 4
    assert it.env.snapshot()['functions'] == {}


def test_if_without_action_or_condition():
    it = Interpreter()
    res = it.run('if 1<2\nif print "x"')
    assert res['output'] == ''
    messages = [d['message'] for d in res['diagnostics']]
    assert messages == ['Missing action in if', 'Missing condition in if']


def test_if_condition_failure_skips_action():
    it = Interpreter()
    res = it.run('if nope > 1 print "x"')
    assert res['output'] == ''
    assert res['diagnostics'][0]['code'] == 'EVALUATION_ERROR'


def test_if_truthiness_of_values():
    it = Interpreter()
    res = it.run(
        'let s "text"\nlet empty ""\nlet zero 0\n'
        'if s print "s"\nif empty print "empty"\nif zero print "zero"\nif 0-1 print "neg"'
    )
    assert res['output'].splitlines() == ['s', 'neg']


def test_loop_zero_has_no_side_effects():
    it = Interpreter()
    res = it.run('loop 0 print "never"\nloop 0 let x 1')
    assert res['output'] == ''
    assert res['diagnostics'] == []
    assert not it.env.has_variable('x')


def test_loop_invalid_count_runs_zero_iterations():
    it = Interpreter()
    res = it.run('loop many print "x"')
    assert res['output'] == ''
    diag = res['diagnostics'][0]
    assert diag['code'] == 'SYNTAX_ERROR'
    assert diag['column'] == len('loop ') + 1


def test_loop_count_uses_leading_integer_and_ignores_negative():
    it = Interpreter()
    res = it.run('loop 2x print "a"\nloop -4 print "b"')
    assert res['output'] == 'a\na\n'
    assert res['diagnostics'] == []


def test_loop_without_body():
    it = Interpreter()
    res = it.run('loop 3')
    assert res['diagnostics'][0]['message'] == 'Missing loop body'


def test_unknown_command_inside_loop_reported_per_iteration():
    it = Interpreter()
    res = it.run('loop 2 jump\nprint "done"')
    assert [d['code'] for d in res['diagnostics']] == ['UNKNOWN_COMMAND'] * 2
    assert all(d['line'] == 1 for d in res['diagnostics'])
    assert res['output'] == 'done\n'


def test_recursive_call_hits_depth_limit_and_run_continues():
    it = Interpreter()
    it.max_call_depth = 10
    res = it.run('func f call f\ncall f\nprint "after"')
    assert res['output'] == 'after\n'
    assert [d['code'] for d in res['diagnostics']] == ['CALL_DEPTH']
    assert res['errors'] is None


def test_find_action_start_skips_quoted_keywords():
    tokens = 'if "a print b" == s print s'.split()
    assert find_action_start(tokens) == 6
    assert find_action_start('if 1 < 2'.split()) is None
    assert find_action_start('if loop == 1 print x'.split()) == 4
    assert find_action_start('if print "x"'.split()) is None


def test_parse_loop_count():
    assert parse_loop_count('3') == 3
    assert parse_loop_count('+2') == 2
    assert parse_loop_count('10times') == 10
    assert parse_loop_count('x') is None
    assert parse_loop_count('-007') == -7
    assert parse_loop_count('9' * 40) == 10 ** 18 - 1


def test_repeated_squaring_overflows_to_infinity():
    it = Interpreter()
    res = it.run('let x 10\nloop 13 let x x*x\nprint x\nprint "after"')
    assert res['output'].splitlines() == ['Infinity', 'after']
    assert res['diagnostics'] == []


def test_huge_literal_prints_infinity_and_run_continues():
    it = Interpreter()
    res = it.run('print ' + '9' * 5000 + '\nprint "after"')
    assert res['output'].splitlines() == ['Infinity', 'after']
    assert res['errors'] is None


def test_if_condition_may_use_variable_named_like_a_command():
    it = Interpreter()
    res = it.run('let loop 1\nif loop == 1 print "x"\nif loop print "y"')
    assert res['output'].splitlines() == ['x', 'y']
    assert res['diagnostics'] == []
