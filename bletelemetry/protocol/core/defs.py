# bletelemetry/protocol/core/defs.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from .records import RECORD_TYPES, TelemetryRecord, record_field_names
from ..loader import ProtocolLoader

FIELD_TYPES = ("float", "int", "str", "enum", "flag", "text")
LAYOUTS = ("kv", "positional", "auto", "text")


@dataclass(frozen=True)
class FieldDef:
    name: str
    key: str
    type: str
    optional: bool = False
    default: Any = None
    scale: Optional[float] = None
    choices: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RecordDef:
    kind: str
    tag: str
    record_cls: Type[TelemetryRecord]
    layout: str
    fields: Tuple[FieldDef, ...]


@dataclass(frozen=True)
class MarkerDef:
    name: str
    match: Tuple[str, ...]
    target: Optional[str] = None
    changes: Mapping[str, Any] = field(default_factory=dict)


class Protocol:
    """Runtime access to one variant's protocol tables."""

    def __init__(self, loader: ProtocolLoader):
        self.variant: str = loader.variant()
        self.constants: Dict[str, Any] = loader.constants
        self.commands: Dict[str, Dict[str, Any]] = {
            str(name): (cmd or {}) for name, cmd in loader.commands.items()
        }

        self.records: Dict[str, RecordDef] = {}
        for kind, rdef in loader.records.items():
            self.records[str(kind)] = self._build_record(str(kind), rdef)

        # Longest tag first so "PID_DEBUG:" wins over "PID:"
        self.tags: Tuple[RecordDef, ...] = tuple(
            sorted(self.records.values(), key=lambda r: len(r.tag), reverse=True)
        )
        seen: Dict[str, str] = {}
        for r in self.tags:
            if r.tag in seen:
                raise ValueError(f"Duplicate tag '{r.tag}' for records '{seen[r.tag]}' and '{r.kind}'")
            seen[r.tag] = r.kind

        self.markers: Tuple[MarkerDef, ...] = tuple(
            self._build_marker(m) for m in loader.markers
        )

        for name in self.startup_commands:
            if name not in self.commands:
                raise ValueError(f"Startup command '{name}' is not defined in commands.yml")

    # ---------------- Constants ----------------
    @property
    def service_uuid(self) -> str:
        return str(self.constants["service_uuid"]).lower()

    @property
    def characteristic_uuid(self) -> str:
        return str(self.constants["characteristic_uuid"]).lower()

    @property
    def device_name_prefix(self) -> str:
        return str(self.constants.get("device_name_prefix", ""))

    @property
    def default_device_name(self) -> str:
        return str(self.constants.get("default_device_name", self.variant))

    @property
    def delimiter(self) -> str:
        return str(self.constants.get("delimiter", "\n"))

    @property
    def encoding(self) -> str:
        return str(self.constants.get("encoding", "utf-8"))

    @property
    def strict_numbers(self) -> bool:
        return bool(self.constants.get("strict_numbers", False))

    @property
    def startup_commands(self) -> Tuple[str, ...]:
        return tuple(str(c) for c in (self.constants.get("startup_commands") or ()))

    def name_matches(self, name: Optional[str]) -> bool:
        prefix = self.device_name_prefix
        if not prefix:
            return True
        return bool(name) and prefix in name

    # ---------------- Commands ----------------
    def get_command_def(self, cmd_name: str) -> Dict[str, Any]:
        if cmd_name not in self.commands:
            raise ValueError(f"Unknown command: {cmd_name}")
        return self.commands[cmd_name]

    def has_command(self, cmd_name: str) -> bool:
        return cmd_name in self.commands

    # ---------------- Builders ----------------
    def _build_record(self, kind: str, rdef: Any) -> RecordDef:
        if not isinstance(rdef, dict):
            raise ValueError(f"Record '{kind}' entry must be a mapping")

        tag = rdef.get("tag")
        if not tag:
            raise ValueError(f"Record '{kind}' is missing 'tag'")

        type_name = rdef.get("type", kind)
        record_cls = RECORD_TYPES.get(type_name)
        if record_cls is None:
            raise ValueError(f"Record '{kind}' has unknown type '{type_name}'")

        layout = rdef.get("layout", "kv")
        if layout not in LAYOUTS:
            raise ValueError(f"Record '{kind}' has unknown layout '{layout}'")

        allowed = record_field_names(record_cls)
        fields = []
        for f in rdef.get("fields") or []:
            name = f.get("name")
            if name not in allowed:
                raise ValueError(f"Record '{kind}' field '{name}' is not a {record_cls.__name__} field")
            ftype = f.get("type", "float")
            if ftype not in FIELD_TYPES:
                raise ValueError(f"Record '{kind}' field '{name}' has unknown type '{ftype}'")
            fields.append(
                FieldDef(
                    name=str(name),
                    key=str(f.get("key", name)),
                    type=ftype,
                    optional=bool(f.get("optional", False)),
                    default=f.get("default"),
                    scale=float(f["scale"]) if "scale" in f else None,
                    choices=tuple(str(c) for c in f.get("choices") or ()),
                )
            )

        return RecordDef(
            kind=kind,
            tag=str(tag),
            record_cls=record_cls,
            layout=layout,
            fields=tuple(fields),
        )

    def _build_marker(self, m: Any) -> MarkerDef:
        if not isinstance(m, dict) or not m.get("name"):
            raise ValueError(f"Marker entry must be a mapping with 'name': {m!r}")

        match = m.get("match") or []
        if isinstance(match, str):
            match = [match]
        if not match:
            raise ValueError(f"Marker '{m['name']}' has no 'match' strings")

        target = m.get("target")
        changes = dict(m.get("set") or {})
        if target is not None:
            rdef = self.records.get(target)
            if rdef is None:
                raise ValueError(f"Marker '{m['name']}' targets unknown record '{target}'")
            unknown = set(changes) - record_field_names(rdef.record_cls)
            if unknown:
                raise ValueError(f"Marker '{m['name']}' sets unknown fields {sorted(unknown)}")
        elif changes:
            raise ValueError(f"Marker '{m['name']}' has 'set' without 'target'")

        return MarkerDef(
            name=str(m["name"]),
            match=tuple(str(s) for s in match),
            target=target,
            changes=changes,
        )
