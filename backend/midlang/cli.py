"""Command-line runner for MidLang scripts.

Usage:
  midlang path/to/script.mscpt
  python -m backend.midlang.cli path/to/script.mscpt --max-steps 5000

The script must have a `.mscpt` extension and exist. Printed output goes to
stdout; diagnostics and warnings go to stderr. Exit status is 1 when the
script path is rejected and 2 when a resource limit aborted the run.
"""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .interpreter import Interpreter

SCRIPT_SUFFIX = ".mscpt"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="midlang", description="Run a MidLang script")
    p.add_argument("script", help=f"Path to a {SCRIPT_SUFFIX} file")
    p.add_argument("--max-steps", type=int, default=None, help="Maximum dispatched lines per run")
    p.add_argument("--max-loop", type=int, default=None, help="Maximum iterations of a single loop")
    p.add_argument("--max-call-depth", type=int, default=None, help="Maximum nesting of call/if/loop bodies")
    p.add_argument("--max-time", type=float, default=None, help="Wall-clock budget in seconds")
    p.add_argument("--subprocess", action="store_true", help="Run the script in an isolated worker process")
    p.add_argument("--timeout", type=float, default=5.0, help="Worker timeout in seconds (with --subprocess)")
    return p.parse_args(argv)


def format_diagnostic(diag: Dict[str, Any]) -> str:
    line = diag.get("line")
    suffix = f" (line {line})" if line else ""
    return f"{diag.get('message', '')}{suffix}"


def main(argv: Optional[List[str]] = None) -> int:
    ns = parse_args(argv)
    if not ns.script.endswith(SCRIPT_SUFFIX):
        sys.stderr.write(f"Error: The file must have a {SCRIPT_SUFFIX} extension.\n")
        return 1
    path = Path(ns.script)
    if not path.is_file():
        sys.stderr.write(f'File "{ns.script}" not found.\n')
        return 1

    code = path.read_text(encoding="utf-8")
    settings: Dict[str, Any] = {
        "max_steps": ns.max_steps,
        "max_loop": ns.max_loop,
        "max_call_depth": ns.max_call_depth,
        "max_time_s": ns.max_time,
    }
    if ns.subprocess:
        settings["use_subprocess"] = True
        settings["timeout_s"] = ns.timeout
        # the worker applies the limits itself; drop the unset ones
        settings = {k: v for k, v in settings.items() if v is not None}

    print(f"\nRunning: {ns.script}")
    result = Interpreter().run(code, settings=settings)

    sys.stdout.write(result.get("output", ""))
    sys.stdout.flush()
    for diag in result.get("diagnostics", []):
        sys.stderr.write(format_diagnostic(diag) + "\n")
    for warning in result.get("warnings", []):
        sys.stderr.write(f"warning: {warning}\n")
    errors = result.get("errors")
    if errors:
        sys.stderr.write(f"error: {format_diagnostic(errors)}\n")
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
