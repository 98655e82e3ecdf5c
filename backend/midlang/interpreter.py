"""MidLang interpreter module.

MidLang scripts are executed one line at a time. Each line is trimmed, split
on whitespace and dispatched by its leading keyword:

- `let <name> <expr>`       bind a variable
- `print <expr...>`         evaluate and print
- `if <condition> <action>` run a single action line when the condition holds
- `func <name> <body...>`   store a single-line function body
- `call <name>`             run a stored function body
- `loop <count> <body...>`  run a single-line body `count` times

Bodies of `if`, `func` and `loop` are kept as raw text and re-dispatched
(re-tokenized) every time they run, so names are resolved at execution time.

Problems with a line (unknown command, undefined function, bad expression,
malformed syntax) are recorded as diagnostics and the run continues with the
next line. Only the resource guards (steps, wall clock, output size) abort a
run; their error is returned in the `errors` field of the result.
"""

import json
import math
import re
import time
from typing import Any, Callable, Dict, List, Optional

from . import subprocess_runner
from .environment import Environment
from .expressions import EvalError, eval_expr, format_value, is_truthy

COMMANDS = ("let", "print", "if", "func", "call", "loop")

# leading-integer parse for loop counts ("3" -> 3, "3x" -> 3, "x" -> None)
_LOOP_COUNT_RE = re.compile(r"([+-]?)0*(\d+)")
# longer digit runs are clamped to max_loop anyway
_LOOP_COUNT_MAX_DIGITS = 18

# settings a caller may override per run; values are coerced to these types
LIMIT_SETTINGS = {
    "max_steps": int,
    "max_loop": int,
    "max_call_depth": int,
    "max_time_s": float,
    "max_output_chars": int,
}


class RunAborted(Exception):
    """Raised when a resource guard stops the whole run.

    Carries the structured error dict that ends up in the result's `errors`.
    """

    def __init__(self, error: Dict[str, Any]):
        super().__init__(error.get("message", "Run aborted"))
        self.error = error


class CallDepthExceeded(Exception):
    """Raised when nested dispatch goes deeper than `max_call_depth`.

    Unwinds the current top-level line only; the run itself continues.
    """


def parse_loop_count(token: str) -> Optional[int]:
    """Parse the leading integer of `token`, or return None if there is none."""
    match = _LOOP_COUNT_RE.match(token)
    if not match:
        return None
    sign, digits = match.groups()
    if len(digits) > _LOOP_COUNT_MAX_DIGITS:
        digits = "9" * _LOOP_COUNT_MAX_DIGITS
    count = int(digits)
    return -count if sign == "-" else count


def find_action_start(tokens: List[str]) -> Optional[int]:
    """Return the index of the first command keyword after `if`.

    The condition takes at least the token right after `if`, so a variable
    named like a command can still be tested. Keywords that appear inside a
    quoted string are skipped. Returns None when the line has no action.
    """
    in_quote = False
    for idx in range(1, len(tokens)):
        tok = tokens[idx]
        if idx > 1 and not in_quote and tok in COMMANDS:
            return idx
        if tok.count('"') % 2:
            in_quote = not in_quote
    return None


class Interpreter:
    """Top-level MidLang interpreter.

    Responsibilities:
    - execute MidLang source text line by line against an `Environment`,
    - collect printed output and diagnostics,
    - enforce resource limits (steps, loop counts, nesting, time, output size).

    Tunable attributes (defaults are set in __init__, and can be overridden
    per run through `run(..., settings=...)`):
    - max_steps: total dispatched lines per run
    - max_loop: ceiling for a single `loop` count (larger counts are truncated)
    - max_call_depth: nesting depth of if/loop/call bodies
    - max_time_s: wall-clock budget per run
    - max_output_chars: total printed characters per run
    """

    def __init__(self):
        self.max_steps = 100000
        self.max_loop = 10000
        self.max_call_depth = 100
        self.max_time_s = 5.0
        self.max_output_chars = 100000
        self.env = Environment()
        self.output_lines: List[str] = []
        self.diagnostics: List[Dict[str, Any]] = []
        self.warnings: List[str] = []
        self._output_chars = 0
        self._steps = 0
        self._depth = 0
        self._deadline: Optional[float] = None
        self._line_no = 0
        self._line_text = ""

    # --- Error helpers -------------------------------------------------
    def _err(self, code: str, message: str, *, column: int = 1, hint: Optional[str] = None) -> Dict[str, Any]:
        err: Dict[str, Any] = {"code": code, "message": message, "line": self._line_no, "column": column}
        if self._line_text:
            err["context"] = {"line_text": self._line_text}
        if hint:
            err["hint"] = hint
        return err

    def _report(self, code: str, message: str, *, fragment: Optional[str] = None, hint: Optional[str] = None) -> None:
        """Record a non-fatal diagnostic for the current line."""
        column = 1
        if fragment:
            column = max(1, self._line_text.find(fragment) + 1)
        self.diagnostics.append(self._err(code, message, column=column, hint=hint))

    def _syntax_error(self, message: str, hint: str) -> None:
        self._report("SYNTAX_ERROR", message, hint=hint)

    # --- Guards --------------------------------------------------------
    def _charge_step(self) -> None:
        self._steps += 1
        if self._steps > self.max_steps:
            self.warnings.append("Step limit exceeded")
            raise RunAborted(self._err("STEP_LIMIT", "Step limit exceeded"))
        if self._deadline is not None and time.time() > self._deadline:
            raise RunAborted(self._err("TIMEOUT", "Time limit exceeded"))

    def _emit(self, text: str) -> None:
        if self._output_chars + len(text) > self.max_output_chars:
            raise RunAborted(self._err("OUTPUT_LIMIT", "Output length limit reached"))
        self._output_chars += len(text)
        self.output_lines.append(text)

    # --- Evaluation ----------------------------------------------------
    def evaluate(self, expr: str) -> Any:
        """Evaluate `expr` in the current environment.

        Failures are reported as an EVALUATION_ERROR diagnostic and yield NaN
        instead of raising.
        """
        try:
            return eval_expr(expr, self.env)
        except EvalError as e:
            self._report(
                "EVALUATION_ERROR",
                f"Error evaluating expression: {expr}",
                fragment=expr,
                hint=str(e),
            )
            return math.nan

    # --- Dispatch ------------------------------------------------------
    def execute_line(self, line: str) -> None:
        """Execute one top-level line.

        A call chain that nests deeper than `max_call_depth` is abandoned and
        reported; execution continues with whatever follows this line.
        """
        self._line_text = line.strip()
        try:
            self._dispatch(line)
        except CallDepthExceeded as e:
            self._report(
                "CALL_DEPTH",
                str(e),
                hint="Check for a function that calls itself without an end.",
            )
        except RecursionError:
            # max_call_depth was set above what the host stack can hold
            self._report("CALL_DEPTH", "Maximum recursion depth reached", hint="Lower max_call_depth.")

    def _dispatch(self, line: str) -> None:
        text = line.strip()
        if not text or text.startswith("//"):
            return
        self._charge_step()
        tokens = text.split()

        dispatch_map: Dict[str, Callable[[List[str]], None]] = {
            "let": self._handle_let,
            "print": self._handle_print,
            "if": self._handle_if,
            "func": self._handle_func,
            "call": self._handle_call,
            "loop": self._handle_loop,
        }
        handler = dispatch_map.get(tokens[0])
        if handler is None:
            self._report(
                "UNKNOWN_COMMAND",
                f"Unknown command: {tokens[0]}",
                hint="Commands are: " + ", ".join(COMMANDS),
            )
            return
        handler(tokens)

    def _execute_nested(self, body: str) -> None:
        """Re-dispatch a stored body (if action, loop body or function body)."""
        if self._depth >= self.max_call_depth:
            raise CallDepthExceeded(f"Call depth limit exceeded ({self.max_call_depth})")
        self._depth += 1
        try:
            self._dispatch(body)
        finally:
            self._depth -= 1

    # --- Command handlers ----------------------------------------------
    def _handle_let(self, tokens: List[str]) -> None:
        if len(tokens) < 2:
            self._syntax_error("Missing variable name in let", "Use: let <name> <expr>")
            return
        name = tokens[1]
        if not name.isidentifier():
            self._syntax_error(
                f"Invalid identifier in let: {name}",
                "Identifiers must be letters/digits/_ and not start with a digit.",
            )
            return
        if len(tokens) < 3:
            self._syntax_error(f"Missing expression for '{name}'", "Use: let <name> <expr>")
            return
        self.env.assign(name, self.evaluate(" ".join(tokens[2:])))

    def _handle_print(self, tokens: List[str]) -> None:
        expr = " ".join(tokens[1:])
        if not expr:
            self._emit("")
            return
        self._emit(format_value(self.evaluate(expr)))

    def _handle_if(self, tokens: List[str]) -> None:
        split = find_action_start(tokens)
        if split is None:
            if len(tokens) > 1 and tokens[1] in COMMANDS and not self.env.has_variable(tokens[1]):
                self._syntax_error("Missing condition in if", "Write: if <condition> <command ...>")
            else:
                self._syntax_error("Missing action in if", "Write: if <condition> <command ...>")
            return
        condition = " ".join(tokens[1:split])
        if is_truthy(self.evaluate(condition)):
            self._execute_nested(" ".join(tokens[split:]))

    def _handle_func(self, tokens: List[str]) -> None:
        if len(tokens) < 2:
            self._syntax_error("Missing function name", "Use: func <name> <command ...>")
            return
        name = tokens[1]
        if not name.isidentifier():
            self._syntax_error(f"Invalid function name: {name}", "Use: func <name> <command ...>")
            return
        if len(tokens) < 3:
            self._syntax_error(f"Missing body for function '{name}'", "Use: func <name> <command ...>")
            return
        self.env.define_function(name, " ".join(tokens[2:]))

    def _handle_call(self, tokens: List[str]) -> None:
        if len(tokens) < 2:
            self._syntax_error("Missing function name", "Use: call <name>")
            return
        name = tokens[1]
        body = self.env.lookup_function(name)
        if body is None:
            self._report(
                "UNDEFINED_FUNCTION",
                f"Function {name} not defined",
                fragment=name,
                hint=f"Define it first with: func {name} <command ...>",
            )
            return
        self._execute_nested(body)

    def _handle_loop(self, tokens: List[str]) -> None:
        if len(tokens) < 2:
            self._syntax_error("Missing loop count", "Use: loop <count> <command ...>")
            return
        count = parse_loop_count(tokens[1])
        if count is None:
            # an unparseable count runs zero iterations
            self._report(
                "SYNTAX_ERROR",
                f"Invalid loop count: {tokens[1]}",
                fragment=tokens[1],
                hint="Use: loop <count> <command ...>",
            )
            return
        body = " ".join(tokens[2:])
        if not body:
            self._syntax_error("Missing loop body", "Use: loop <count> <command ...>")
            return
        if count > self.max_loop:
            self.warnings.append(f"Loop count limited to {self.max_loop}")
            count = self.max_loop
        for _ in range(count):
            self._execute_nested(body)

    # --- Running whole scripts -----------------------------------------
    def _apply_settings(self, settings: Dict[str, Any]) -> None:
        for key, cast in LIMIT_SETTINGS.items():
            if key in settings and settings[key] is not None:
                setattr(self, key, cast(settings[key]))

    def _reset(self) -> None:
        self.env = Environment()
        self.output_lines = []
        self.diagnostics = []
        self.warnings = []
        self._output_chars = 0
        self._steps = 0
        self._depth = 0
        self._line_no = 0
        self._line_text = ""

    def _result(self, errors: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "output": "\n".join(self.output_lines) + ("\n" if self.output_lines else ""),
            "diagnostics": self.diagnostics,
            "warnings": self.warnings,
            "errors": errors,
            "steps": self._steps,
        }

    def run(self, code: str, settings: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Run a whole script and return the result dict.

        Args:
            code: MidLang source text; lines are separated by newlines.
            settings: optional per-run overrides for the limit attributes,
                plus `use_subprocess`/`timeout_s` to run in a worker process.

        Returns:
            dict with `output` (printed text), `diagnostics` (list of error
            dicts, in order), `warnings`, `errors` (fatal limit error or None)
            and `steps`.
        """
        settings_local: Dict[str, Any] = settings or {}
        if settings_local.get("use_subprocess"):
            return self._run_in_subprocess(code, settings_local)

        # overrides only last for this run
        defaults = {key: getattr(self, key) for key in LIMIT_SETTINGS}
        errors: Optional[Dict[str, Any]] = None
        try:
            self._apply_settings(settings_local)
            self._reset()
            self._deadline = time.time() + self.max_time_s
            for number, raw in enumerate(code.split("\n"), start=1):
                self._line_no = number
                try:
                    self.execute_line(raw)
                except RunAborted as e:
                    errors = e.error
                    break
        finally:
            self._deadline = None
            for key, value in defaults.items():
                setattr(self, key, value)
        return self._result(errors)

    def _run_in_subprocess(self, code: str, settings: Dict[str, Any]) -> Dict[str, Any]:
        # Run the script in a separate worker process with a hard wall-clock
        # timeout. The worker receives the remaining settings unchanged.
        forwarded = {k: v for k, v in settings.items() if k not in ("use_subprocess", "timeout_s")}
        self._reset()
        try:
            rc, out, err = subprocess_runner.run_script_in_subprocess(
                code, forwarded, timeout_s=float(settings.get("timeout_s", 5))
            )
        except OSError as e:
            return self._result({"code": "SUBPROCESS_ERROR", "message": str(e)})
        if rc == -1:
            return self._result({"code": "TIMEOUT", "message": "Subprocess time limit exceeded"})
        if rc != 0:
            return self._result({"code": "SUBPROCESS_FAILED", "message": err.strip() or out.strip()})
        try:
            return json.loads(out)
        except ValueError:
            return self._result({"code": "SUBPROCESS_FAILED", "message": "Worker returned invalid JSON"})
