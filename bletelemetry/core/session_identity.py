# bletelemetry/core/session_identity.py
from __future__ import annotations

from typing import Any, Dict

from bletelemetry.core.context import Context
from bletelemetry.runtime.state import ConnectionState


def context_identity(context: Context) -> Dict[str, Any]:
    return {
        "variant": context.variant,
        "protocol_version": int(context.protocol_version),
        "protocol_files_sha256": dict(context.protocol_hashes),
    }


def device_fingerprint(state: ConnectionState) -> Dict[str, Any]:
    return {
        "device_id": state.device_id,
        "device_name": state.device_name,
    }
