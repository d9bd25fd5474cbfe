# bletelemetry/core/context.py
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

import yaml

from bletelemetry.protocol.loader import ProtocolLoader
from bletelemetry.protocol.core.defs import Protocol

from bletelemetry.core.errors import ConfigError

#: Protocol tables shipped with the package (one sub-directory per variant).
DEFAULT_PROTOCOL_ROOT = Path(__file__).resolve().parents[1] / "metadata" / "protocol"


def list_variants(protocol_root: str | Path = DEFAULT_PROTOCOL_ROOT) -> List[str]:
    """Variant names = sub-directories that carry a complete set of tables."""
    root = Path(protocol_root)
    if not root.is_dir():
        return []
    return sorted(
        p.name
        for p in root.iterdir()
        if p.is_dir() and all((p / f).exists() for f in ProtocolLoader.REQUIRED_FILES)
    )


@dataclass(frozen=True)
class Context:
    variant: str
    protocol: Protocol
    protocol_version: int
    protocol_dir: Path
    protocol_hashes: Dict[str, str]

    @classmethod
    def load(
        cls,
        protocol_root: str | Path = DEFAULT_PROTOCOL_ROOT,
        variant: str = "battery_tester",
    ) -> "Context":
        """
        Load the protocol tables of one instrument variant.

        Any failure (missing directory, bad YAML, inconsistent tables) is
        reported as ConfigError.
        """
        protocol_dir = Path(protocol_root) / variant
        if not protocol_dir.is_dir():
            raise ConfigError(
                f"Unknown protocol variant: {variant}",
                hint=f"Available: {', '.join(list_variants(protocol_root)) or 'none'}",
                details={"protocol_dir": str(protocol_dir)},
            )

        pl = ProtocolLoader(protocol_dir)
        try:
            pl.load_all()
            proto = Protocol(pl)
        except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
            raise ConfigError(
                "Failed to load protocol definition.",
                hint=str(e),
                details={"protocol_dir": str(protocol_dir)},
            ) from None
        except Exception as e:
            raise ConfigError(
                "Unexpected error while loading protocol definition.",
                hint=str(e),
                details={"protocol_dir": str(protocol_dir)},
            ) from None

        return cls(
            variant=proto.variant,
            protocol=proto,
            protocol_version=pl.protocol_version(),
            protocol_dir=protocol_dir,
            protocol_hashes=dict(pl.file_hashes),
        )
