"""FastAPI application entrypoints for MidLang.

Each `/run` request builds a fresh `Interpreter` so no variables or functions
leak between requests. Client-supplied limits are clamped to the server's
defaults before the run.
"""

import time
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from .. import db
from ..midlang.interpreter import LIMIT_SETTINGS, Interpreter

app = FastAPI(title="MidLang API", version="0.1")


def _cap_settings(settings: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Clamp client settings to the limits of a fresh `Interpreter()`.

    Values above the server defaults are lowered to them; `use_subprocess`
    and `timeout_s` pass through (subprocess runs are strictly safer).
    Returns a dict suitable for `Interpreter.run(settings=...)`.
    """
    defaults = Interpreter()
    safe = {key: getattr(defaults, key) for key in LIMIT_SETTINGS}
    if not settings:
        return safe
    caps: Dict[str, Any] = {}
    for key, cast in LIMIT_SETTINGS.items():
        requested = settings.get(key)
        caps[key] = safe[key] if requested is None else min(cast(requested), safe[key])
    if settings.get("use_subprocess"):
        caps["use_subprocess"] = True
        caps["timeout_s"] = min(float(settings.get("timeout_s", safe["max_time_s"])), safe["max_time_s"])
    return caps


@app.on_event('startup')
def startup():
    """FastAPI startup event: create the database schema."""
    db.init_db()


class RunRequest(BaseModel):
    """Body of `POST /run`.

    Fields:
        code: MidLang source text.
        settings: optional limit overrides; capped server-side.
        script_id: optional id of a saved script this run belongs to.
    """
    code: str
    settings: Optional[Dict[str, Any]] = None
    script_id: Optional[int] = None


class SaveScriptRequest(BaseModel):
    title: str
    code: str


def _execute(code: str, settings: Optional[Dict[str, Any]], script_id: Optional[int]) -> Dict[str, Any]:
    start = time.time()
    try:
        capped = _cap_settings(settings or {})
        result = Interpreter().run(code, settings=capped)
    except Exception as e:
        # keep the response shape stable for unexpected interpreter failures
        return {
            "output": "",
            "diagnostics": [],
            "warnings": [],
            "steps": 0,
            "duration_ms": int((time.time() - start) * 1000),
            "errors": {"code": "SERVER_ERROR", "message": str(e)},
        }
    result["duration_ms"] = int((time.time() - start) * 1000)

    # persisting the run summary is best-effort
    try:
        errors = result.get("errors") or {}
        db.save_run(
            script_id,
            result.get("steps", 0),
            len(result.get("output", "").splitlines()),
            result.get("diagnostics"),
            errors.get("code"),
            result["duration_ms"],
        )
    except Exception as e:
        result.setdefault("warnings", []).append(f"Failed to persist run: {e}")
    return result


@app.post("/run")
async def run_code(req: RunRequest):
    """Run MidLang source text and return output, diagnostics and limits hit."""
    return _execute(req.code, req.settings, req.script_id)


@app.post('/save')
async def save_script(req: SaveScriptRequest):
    try:
        script_id = db.save_script(req.title, req.code)
    except Exception as e:
        return {'error': str(e)}
    return {'script_id': script_id}


@app.get('/scripts')
async def list_scripts():
    return db.list_scripts()


@app.get('/scripts/{script_id}')
async def get_script(script_id: int):
    s = db.get_script(script_id)
    if not s:
        raise HTTPException(status_code=404, detail='script not found')
    return s


@app.post('/scripts/{script_id}/run')
async def run_saved_script(script_id: int, settings: Optional[Dict[str, Any]] = None):
    """Run a previously saved script by id."""
    s = db.get_script(script_id)
    if not s:
        raise HTTPException(status_code=404, detail='script not found')
    return _execute(s['code_text'], settings, script_id)


@app.get('/stats')
async def list_stats(script_id: Optional[int] = None):
    return db.list_runs(script_id)
