"""Subprocess worker that runs one MidLang script.

Reads a single JSON object `{"code": "...", "settings": {...}}` from stdin,
runs it with a fresh `Interpreter` and writes the run result dict as JSON to
stdout. Started by `subprocess_runner` as `python -m
backend.midlang._subprocess_worker`; the parent enforces the timeout.
"""

import json
import sys

from backend.midlang.interpreter import Interpreter


def main() -> int:
    raw = sys.stdin.read()
    try:
        payload = json.loads(raw)
    except ValueError as e:
        print(json.dumps({"error": f"bad_payload: {e}"}))
        return 1
    if not isinstance(payload, dict):
        print(json.dumps({"error": "bad_payload: expected an object"}))
        return 1
    settings = dict(payload.get("settings") or {})
    # never recurse into another worker
    settings.pop("use_subprocess", None)
    result = Interpreter().run(payload.get("code", ""), settings=settings)
    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
