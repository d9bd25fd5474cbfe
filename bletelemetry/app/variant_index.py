# bletelemetry/app/variant_index.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Tuple

from bletelemetry.core.context import Context, DEFAULT_PROTOCOL_ROOT, list_variants
from bletelemetry.core.errors import ConfigError


@dataclass(frozen=True, slots=True)
class VariantInfo:
    name: str
    device_name: str
    protocol_version: int
    record_kinds: Tuple[str, ...]
    commands: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class VariantIndex:
    """
    App-facing index of the protocol variants under one protocol root
    (read-only view for the CLI).
    """
    _variants: Mapping[str, VariantInfo]

    @classmethod
    def load(cls, protocol_root: str | Path = DEFAULT_PROTOCOL_ROOT) -> "VariantIndex":
        variants: Dict[str, VariantInfo] = {}
        for name in list_variants(protocol_root):
            ctx = Context.load(protocol_root, name)
            proto = ctx.protocol
            variants[name] = VariantInfo(
                name=name,
                device_name=proto.default_device_name,
                protocol_version=ctx.protocol_version,
                record_kinds=tuple(sorted({r.kind for r in proto.records.values()})),
                commands=tuple(sorted(proto.commands)),
            )
        return cls(_variants=variants)

    def list(self) -> List[VariantInfo]:
        return [self._variants[k] for k in sorted(self._variants)]

    def get(self, name: str) -> VariantInfo:
        info = self._variants.get(name)
        if info is None:
            known = ", ".join(sorted(self._variants)) or "none"
            raise ConfigError(
                f"Unknown protocol variant '{name}'.",
                hint=f"Run: bletelemetry variants (known: {known})",
            )
        return info
