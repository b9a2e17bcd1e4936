#!/usr/bin/env python3
"""
Audit log for the resume pipeline

Two JSON files under LOGS_DIR:
- conversations.json: full LLM exchanges (inputs, raw reply, parsed LaTeX)
- operations.json: operational steps with success/error status

Logging is for observability only. Every failure here is printed and
swallowed so it can never change the outcome of a run.
"""

import json
import random
import string
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import config

MAX_CONVERSATIONS = 100
MAX_OPERATIONS = 500

_lock = threading.Lock()


def _logs_dir() -> Path:
    return Path(config.LOGS_DIR)


def _read_log_file(path: Path) -> List[Dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding='utf-8'))
        return data if isinstance(data, list) else []
    except (OSError, ValueError):
        return []


def _append_entry(filename: str, entry: Dict[str, Any], keep: int):
    logs_dir = _logs_dir()
    logs_dir.mkdir(parents=True, exist_ok=True)
    path = logs_dir / filename

    with _lock:
        entries = _read_log_file(path)
        entries.append(entry)
        path.write_text(json.dumps(entries[-keep:], indent=2, ensure_ascii=False), encoding='utf-8')


def generate_request_id() -> str:
    """Short unique id: base36 millisecond timestamp + 6 random chars."""
    millis = int(time.time() * 1000)
    alphabet = string.digits + string.ascii_lowercase
    stamp = ''
    while millis:
        millis, rem = divmod(millis, 36)
        stamp = alphabet[rem] + stamp
    suffix = ''.join(random.choices(alphabet, k=6))
    return f"{stamp}-{suffix}"


def log_conversation(request_id: str, kind: str, input_data: Dict[str, Any],
                     output: Dict[str, Any]) -> None:
    """
    Record one LLM exchange.

    Args:
        request_id: Id of the pipeline run
        kind: 'initial', 'followup', 'fix', 'retry' or 'expand'
        input_data: What was sent (resume, job description, compile error, ...)
        output: rawResponse plus parsed fields
    """
    entry = {
        'id': request_id,
        'timestamp': datetime.now().isoformat(),
        'type': kind,
        'input': input_data,
        'output': output,
    }
    try:
        _append_entry('conversations.json', entry, MAX_CONVERSATIONS)
    except Exception as e:
        print(f"Failed to log conversation: {e}", file=sys.stderr)


def log_operation(request_id: str, action: str, status: str = 'success',
                  details: Optional[str] = None, error: Optional[str] = None) -> None:
    """Record an operational step (status is 'success' or 'error')."""
    entry = {
        'id': request_id,
        'timestamp': datetime.now().isoformat(),
        'action': action,
        'status': status,
    }
    if details:
        entry['details'] = details
    if error:
        entry['error'] = error
    try:
        _append_entry('operations.json', entry, MAX_OPERATIONS)
    except Exception as e:
        print(f"Failed to log operation: {e}", file=sys.stderr)
