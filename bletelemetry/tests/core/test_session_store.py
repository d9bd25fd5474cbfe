from __future__ import annotations

import json

from bletelemetry.core.context import Context
from bletelemetry.core.session_identity import context_identity, device_fingerprint
from bletelemetry.core.session_store import (
    create_session_dir,
    load_session_json,
    update_session_json,
    write_session_json,
)
from bletelemetry.runtime.state import ConnectionState, ConnectionStatus


def test_create_session_dir_layout(tmp_path):
    ctx = Context.load(variant="current_monitor")
    paths = create_session_dir(
        tmp_path,
        identity=context_identity(ctx),
        device=device_fingerprint(ConnectionState()),
        prefix="bench",
    )

    assert paths.root.parent == tmp_path
    assert paths.root.name.startswith("bench_")
    assert paths.records_dir.is_dir()
    assert paths.log_file == paths.root / "session.log"

    data = json.loads(paths.session_json.read_text(encoding="utf-8"))
    assert data["protocol"]["variant"] == "current_monitor"
    assert data["protocol"]["protocol_version"] == 1
    assert data["protocol"]["files_sha256"] == ctx.protocol_hashes
    assert data["device"] == {"device_id": None, "device_name": None}
    assert data["created_at_utc"]


def test_update_session_json_merges_sections(tmp_path):
    p = tmp_path / "session.json"
    write_session_json(p, {"a": 1})
    update_session_json(p, b={"x": 2})

    data = load_session_json(p)
    assert data["a"] == 1
    assert data["b"] == {"x": 2}


def test_load_session_json_tolerates_missing_and_corrupt(tmp_path, caplog):
    p = tmp_path / "session.json"
    assert load_session_json(p) == {}

    p.write_text("{not json", encoding="utf-8")
    assert load_session_json(p) == {}
    assert any("SESSION_JSON_CORRUPT" in m for m in caplog.messages)


def test_device_fingerprint():
    st = ConnectionState(status=ConnectionStatus.CONNECTED, device_id="AA", device_name="JDY-23")

    assert device_fingerprint(st) == {"device_id": "AA", "device_name": "JDY-23"}
