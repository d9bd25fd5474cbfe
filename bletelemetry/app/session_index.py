# bletelemetry/app/session_index.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

from bletelemetry.core.session_store import load_session_json, update_session_json, write_session_json


def upsert_record_schema(
    session_json_path: Path,
    *,
    kind: str,
    schema: Dict[str, Any],
) -> bool:
    data = load_session_json(session_json_path)

    records = data.get("records")
    if not isinstance(records, dict):
        records = {}
        data["records"] = records

    if records.get(kind) == schema:
        return False

    records[kind] = schema
    write_session_json(session_json_path, data)
    return True


def set_device(session_json_path: Path, *, device: Dict[str, Any]) -> None:
    update_session_json(session_json_path, device=dict(device))


def recorded_kinds(session_json_path: Path) -> List[str]:
    records = load_session_json(session_json_path).get("records")
    return sorted(records) if isinstance(records, dict) else []
