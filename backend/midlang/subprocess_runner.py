"""Run a MidLang script in a short-lived worker process.

`run_script_in_subprocess` launches `_subprocess_worker` (JSON over
stdin/stdout), enforces a wall-clock timeout and, on POSIX, applies CPU-time
and address-space limits to the child. This gives a hard stop for scripts
that would otherwise run until the host gives out, e.g. a large `loop`
nested inside a recursive `call`.

Returns (returncode, stdout, stderr). A returncode of -1 means the worker was
killed because the timeout expired.
"""

import json
import os
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

WORKER_MODULE = "backend.midlang._subprocess_worker"
# directory that contains the `backend` package; the worker runs from here
PACKAGE_ROOT = Path(__file__).resolve().parents[2]


def _make_posix_preexec(cpu_seconds: Optional[int], mem_limit_mb: Optional[int]):
    """Return a preexec_fn that applies resource limits in the child."""

    def preexec():
        import resource

        if cpu_seconds is not None:
            resource.setrlimit(resource.RLIMIT_CPU, (int(cpu_seconds), int(cpu_seconds)))
        if mem_limit_mb is not None:
            mem_bytes = int(mem_limit_mb) * 1024 * 1024
            resource.setrlimit(resource.RLIMIT_AS, (mem_bytes, mem_bytes))
        # new session so signals aimed at the parent's group skip the worker
        os.setsid()

    return preexec


def run_script_in_subprocess(
    code: str,
    settings: Optional[Dict[str, Any]] = None,
    timeout_s: float = 5,
    *,
    cpu_seconds: Optional[int] = 5,
    mem_limit_mb: Optional[int] = 512,
) -> Tuple[int, str, str]:
    """Run `code` through the worker and return its raw outputs.

    Parameters:
      - code: MidLang source text.
      - settings: per-run limit overrides passed to `Interpreter.run`.
      - timeout_s: wall-clock timeout for the whole operation (seconds).
      - cpu_seconds: optional RLIMIT_CPU (seconds) applied on POSIX.
      - mem_limit_mb: optional RLIMIT_AS (MB) applied on POSIX.

    On timeout the worker is killed and (-1, "", "TIMEOUT") is returned.
    """
    # keep the child's environment minimal; PATH is enough to start python
    env = {"PATH": os.environ.get("PATH", "")}

    popen_kwargs: Dict[str, Any] = dict(
        args=[sys.executable, "-m", WORKER_MODULE],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
        cwd=str(PACKAGE_ROOT),
        close_fds=True,
    )
    if os.name != "nt":
        popen_kwargs["preexec_fn"] = _make_posix_preexec(cpu_seconds, mem_limit_mb)

    proc = subprocess.Popen(**popen_kwargs)

    payload = json.dumps({"code": code, "settings": settings or {}})
    try:
        out, err = proc.communicate(payload, timeout=timeout_s)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.communicate()
        return -1, "", "TIMEOUT"

    return proc.returncode, out or "", err or ""
