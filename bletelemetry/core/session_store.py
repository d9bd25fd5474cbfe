# bletelemetry/core/session_store.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionPaths:
    root: Path
    commands_jsonl: Path
    records_dir: Path
    session_json: Path
    log_file: Path


# ---------------- low-level json helpers ----------------

def load_session_json(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f) or {}
    except FileNotFoundError:
        return {}
    except json.JSONDecodeError as e:
        _log.warning("SESSION_JSON_CORRUPT path=%s error=%s", path, e)
        return {}


def write_session_json(path: Path, data: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

    now = datetime.now(timezone.utc).isoformat()
    data = dict(data)

    existing = load_session_json(path)
    if existing.get("created_at_utc"):
        data.setdefault("created_at_utc", existing["created_at_utc"])

    data.setdefault("created_at_utc", now)
    data["updated_at_utc"] = now

    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def update_session_json(path: Path, **sections: Any) -> None:
    """Merge top-level sections into an existing session.json."""
    data = load_session_json(path)
    data.update(sections)
    write_session_json(path, data)


# ---------------- session creation ----------------

def create_session_dir(
    base_dir: str | Path,
    *,
    identity: Dict[str, Any],
    device: Dict[str, Any],
    prefix: str = "session",
) -> SessionPaths:
    """
    Create a new recording directory and write the initial session.json.

    `identity` comes from session_identity.context_identity():
      - variant: str
      - protocol_version: int
      - protocol_files_sha256: dict[str, str]
    `device` comes from session_identity.device_fingerprint().
    """
    base_dir = Path(base_dir)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
    root = base_dir / f"{prefix}_{ts}"
    root.mkdir(parents=True, exist_ok=False)

    records_dir = root / "records"
    records_dir.mkdir(parents=True, exist_ok=True)

    paths = SessionPaths(
        root=root,
        commands_jsonl=root / "commands.jsonl",
        records_dir=records_dir,
        session_json=root / "session.json",
        log_file=root / "session.log",
    )

    write_session_json(
        paths.session_json,
        {
            "protocol": {
                "variant": identity["variant"],
                "protocol_version": int(identity["protocol_version"]),
                "files_sha256": dict(identity["protocol_files_sha256"]),
            },
            "device": dict(device),
        },
    )

    _log.info("SESSION_DIR_CREATED path=%s", root)
    return paths
