"""Tests for interpreter runtime limits (steps, loop counts, time, output caps)."""

from backend.midlang.interpreter import Interpreter


def test_step_limit():
    it = Interpreter()
    it.max_steps = 5
    code = "\n".join(["print 1"] * 20)
    res = it.run(code)
    assert res["errors"] and res["errors"]["code"] == "STEP_LIMIT"
    assert res["output"].count("1") == 5
    assert "Step limit exceeded" in res["warnings"]


def test_step_limit_inside_loop_reports_line():
    it = Interpreter()
    res = it.run('print "start"\nloop 10000 loop 10000 let x 1', settings={"max_steps": 50})
    assert res["errors"]["code"] == "STEP_LIMIT"
    assert res["errors"]["line"] == 2
    assert res["output"] == "start\n"


def test_loop_cap_truncates_with_warning():
    it = Interpreter()
    it.max_loop = 3
    res = it.run('loop 10 print 1')
    assert res["output"] == "1\n1\n1\n"
    assert "Loop count limited to 3" in res["warnings"]
    assert res["errors"] is None


def test_output_limit():
    it = Interpreter()
    it.max_output_chars = 10
    code = "\n".join(['print "abcdefghij"'] * 5)
    res = it.run(code)
    assert res["errors"] and res["errors"]["code"] == "OUTPUT_LIMIT"
    assert res["output"] == "abcdefghij\n"


def test_time_limit():
    it = Interpreter()
    res = it.run('print 1', settings={"max_time_s": -1})
    assert res["errors"]["code"] == "TIMEOUT"
    assert res["output"] == ""


def test_settings_override_limits_for_the_run():
    it = Interpreter()
    res = it.run('loop 5 print 1', settings={"max_loop": "2", "max_steps": None})
    assert res["output"].count("1") == 2
    assert it.max_loop == 10000
    assert it.max_steps == 100000


def test_settings_do_not_leak_into_next_run():
    it = Interpreter()
    it.max_loop = 8
    it.run('print 1', settings={"max_loop": 2})
    res = it.run('loop 5 print "a"')
    assert res["output"].count("a") == 5
    assert res["warnings"] == []
    assert it.max_loop == 8


def test_huge_loop_count_is_clamped():
    it = Interpreter()
    it.max_loop = 3
    res = it.run("loop " + "9" * 5000 + ' print "x"\nprint "after"')
    assert res["output"].splitlines() == ["x", "x", "x", "after"]
    assert "Loop count limited to 3" in res["warnings"]


def test_call_depth_setting():
    it = Interpreter()
    res = it.run('func a call b\nfunc b call a\ncall a', settings={"max_call_depth": 4})
    assert [d["code"] for d in res["diagnostics"]] == ["CALL_DEPTH"]
    assert "4" in res["diagnostics"][0]["message"]
