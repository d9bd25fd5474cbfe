from __future__ import annotations

import logging
import re
import time
from typing import Any, Callable, Dict, Optional, Union

from bletelemetry.core.errors import MalformedRecordError

from .defs import FieldDef, Protocol, RecordDef
from .records import LifecycleMarker, TelemetryRecord, Unrecognized

DecodedMessage = Union[TelemetryRecord, LifecycleMarker, Unrecognized]

# Leading numeric prefix, the way firmware-side printf output is usually read
# ("12.5V" -> 12.5, "7s" -> 7).
_FLOAT_RE = re.compile(r"^\s*[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INT_RE = re.compile(r"^\s*[+-]?\d+")

_ZERO: Dict[str, Any] = {
    "float": 0.0,
    "int": 0,
    "str": "",
    "enum": "",
    "flag": False,
    "text": "",
}


class MessageDecoder:
    """
    Table-driven record decoder: tag -> grammar -> record dataclass.

    Never raises for bad input: anything it cannot classify or parse is
    returned as Unrecognized and logged.
    """

    def __init__(
        self,
        proto: Protocol,
        *,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.proto = proto
        self._log = logger or logging.getLogger(__name__)
        self._clock = clock

    # ---------------- Public API ----------------
    def decode(self, record: str) -> DecodedMessage:
        for rdef in self.proto.tags:
            if record.startswith(rdef.tag):
                payload = record[len(rdef.tag):]
                try:
                    return self._build_record(rdef, payload)
                except MalformedRecordError as e:
                    self._log.warning("RECORD_MALFORMED kind=%s err=%s record=%r", rdef.kind, e, record)
                    return Unrecognized(record=record, reason="malformed")

        for marker in self.proto.markers:
            if any(s in record for s in marker.match):
                return LifecycleMarker(
                    name=marker.name,
                    text=record,
                    target=marker.target,
                    changes=dict(marker.changes),
                    timestamp=self._clock(),
                )

        self._log.debug("RECORD_UNRECOGNIZED record=%r", record)
        return Unrecognized(record=record)

    # ---------------- Grammar ----------------
    def _build_record(self, rdef: RecordDef, payload: str) -> TelemetryRecord:
        raw = self._split_payload(rdef, payload)

        values: Dict[str, Any] = {}
        for fdef in rdef.fields:
            values[fdef.name] = self._convert(rdef, fdef, raw.get(fdef.name))

        return rdef.record_cls(kind=rdef.kind, timestamp=self._clock(), **values)

    def _split_payload(self, rdef: RecordDef, payload: str) -> Dict[str, Optional[str]]:
        """Map field name -> raw string (None when the field is absent)."""
        layout = rdef.layout
        if layout == "auto":
            layout = "kv" if "=" in payload else "positional"

        if layout == "text":
            text = payload.strip()
            return {f.name: text for f in rdef.fields if f.type == "text"}

        if layout == "positional":
            parts = [p.strip() for p in payload.split(",")]
            return {f.name: parts[i] for i, f in enumerate(rdef.fields) if i < len(parts)}

        if payload.strip() and "=" not in payload:
            raise MalformedRecordError(
                f"{rdef.kind}: expected KEY=VALUE pairs",
                details={"payload": payload},
            )

        pairs: Dict[str, str] = {}
        for item in payload.split(","):
            key, sep, value = item.partition("=")
            if not sep:
                continue
            pairs.setdefault(key.strip(), value.strip())

        return {f.name: pairs[f.key] for f in rdef.fields if f.key in pairs}

    # ---------------- Fields ----------------
    def _convert(self, rdef: RecordDef, fdef: FieldDef, raw: Optional[str]) -> Any:
        if raw is None or raw == "":
            if fdef.optional:
                return None
            return self._default(fdef)

        ftype = fdef.type

        if ftype in ("float", "int"):
            value = self._parse_number(ftype, raw)
            if value is None:
                if self.proto.strict_numbers:
                    raise MalformedRecordError(
                        f"{rdef.kind}.{fdef.name}: not a number: {raw!r}",
                        details={"field": fdef.name, "raw": raw},
                    )
                self._log.debug("FIELD_DEFAULTED kind=%s field=%s raw=%r", rdef.kind, fdef.name, raw)
                return _ZERO[ftype]
            if fdef.scale is not None:
                value = value * fdef.scale
            return value

        if ftype == "flag":
            return raw == "1"

        if ftype == "enum":
            if fdef.choices and raw not in fdef.choices:
                self._log.debug("ENUM_DEFAULTED kind=%s field=%s raw=%r", rdef.kind, fdef.name, raw)
                return self._default(fdef)
            return raw

        return raw

    def _parse_number(self, ftype: str, raw: str) -> Any:
        if self.proto.strict_numbers:
            try:
                return float(raw) if ftype == "float" else int(raw)
            except ValueError:
                return None

        m = (_FLOAT_RE if ftype == "float" else _INT_RE).match(raw)
        if not m:
            return None
        text = m.group(0).strip()
        return float(text) if ftype == "float" else int(text)

    @staticmethod
    def _default(fdef: FieldDef) -> Any:
        if fdef.default is None:
            if fdef.type == "enum" and fdef.choices:
                return fdef.choices[0]
            return _ZERO[fdef.type]

        if fdef.type == "float":
            return float(fdef.default)
        if fdef.type == "int":
            return int(fdef.default)
        if fdef.type == "flag":
            return bool(fdef.default)
        return str(fdef.default)
