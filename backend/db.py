import json
import os
from pathlib import Path
import sqlite3
from typing import Any, Dict, List, Optional

DEFAULT_DB_PATH = Path(__file__).parent / 'midlang.db'


def get_db_path() -> Path:
    """Return the SQLite file location.

    `MIDLANG_DB_PATH` overrides the default; it is read on every call so
    tests can point the app at a temporary file after import.
    """
    return Path(os.environ.get('MIDLANG_DB_PATH') or DEFAULT_DB_PATH)


def get_conn():
    """Return a new sqlite3 connection that yields dict-like rows.

    A fresh connection per call is plenty for the request volume this
    service sees.
    """
    conn = sqlite3.connect(str(get_db_path()))
    conn.row_factory = sqlite3.Row
    return conn


def init_db():
    """Create the Scripts and Runs tables if they do not exist yet."""
    db_path = get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = get_conn()
    cur = conn.cursor()
    cur.execute('''
    CREATE TABLE IF NOT EXISTS Scripts (
      script_id INTEGER PRIMARY KEY,
      title TEXT NOT NULL,
      code_text TEXT NOT NULL,
      created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''')
    cur.execute('''
    CREATE TABLE IF NOT EXISTS Runs (
      run_id INTEGER PRIMARY KEY,
      script_id INTEGER NULL,
      steps INTEGER,
      output_lines INTEGER,
      diagnostics TEXT,
      error_code TEXT NULL,
      duration_ms INTEGER,
      created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    ''')
    conn.commit()
    conn.close()


def save_script(title: str, code_text: str) -> int:
    """Persist a script and return its new script_id."""
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        'INSERT INTO Scripts (title, code_text) VALUES (?, ?)',
        (title, code_text),
    )
    script_id = cur.lastrowid
    conn.commit()
    conn.close()
    return script_id


def list_scripts() -> List[Dict[str, Any]]:
    """Return saved scripts (id, title, created_at), newest first."""
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        'SELECT script_id, title, created_at FROM Scripts '
        'ORDER BY created_at DESC, script_id DESC'
    )
    rows = cur.fetchall()
    conn.close()
    return [dict(r) for r in rows]


def get_script(script_id: int) -> Optional[Dict[str, Any]]:
    conn = get_conn()
    cur = conn.cursor()
    cur.execute(
        'SELECT script_id, title, code_text, created_at FROM Scripts '
        'WHERE script_id = ?',
        (script_id,),
    )
    row = cur.fetchone()
    conn.close()
    return dict(row) if row else None


def save_run(
    script_id: Optional[int],
    steps: int,
    output_lines: int,
    diagnostics: Optional[List[Dict[str, Any]]],
    error_code: Optional[str],
    duration_ms: int,
) -> int:
    """Persist a run summary row and return its run_id.

    Only the diagnostic codes are stored (as a JSON list); the full
    diagnostics stay in the API response.
    """
    conn = get_conn()
    cur = conn.cursor()
    codes_json = json.dumps([d.get('code') for d in (diagnostics or [])])
    cur.execute(
        """
        INSERT INTO Runs (
            script_id, steps, output_lines, diagnostics, error_code, duration_ms
        ) VALUES (?, ?, ?, ?, ?, ?)
        """,
        (script_id, steps, output_lines, codes_json, error_code, duration_ms),
    )
    run_id = cur.lastrowid
    conn.commit()
    conn.close()
    return run_id


def list_runs(script_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """List run rows, optionally filtered by script_id, newest first."""
    conn = get_conn()
    cur = conn.cursor()
    query = (
        "SELECT run_id, script_id, steps, output_lines, diagnostics, error_code,"
        " duration_ms, created_at FROM Runs"
    )
    if script_id:
        cur.execute(query + " WHERE script_id = ? ORDER BY run_id DESC", (script_id,))
    else:
        cur.execute(query + " ORDER BY run_id DESC")
    rows = cur.fetchall()
    conn.close()
    out = []
    for r in rows:
        d = dict(r)
        try:
            d['diagnostics'] = json.loads(d.get('diagnostics') or '[]')
        except ValueError:
            # tolerate a corrupt column rather than failing the listing
            d['diagnostics'] = []
        out.append(d)
    return out
