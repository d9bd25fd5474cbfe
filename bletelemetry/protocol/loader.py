# bletelemetry/protocol/loader.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict

import yaml

from bletelemetry.utils.hashing import sha256_file


class ProtocolLoader:
    """Load one variant's protocol YAML files into dicts + keep per-file SHA256 hashes."""

    REQUIRED_FILES = (
        "constants.yml",
        "records.yml",
        "markers.yml",
        "commands.yml",
    )

    def __init__(self, config_dir: Path):
        self.config_dir = Path(config_dir)

        # Full documents
        self.constants_doc: Dict[str, Any] = {}
        self.records_doc: Dict[str, Any] = {}
        self.markers_doc: Dict[str, Any] = {}
        self.commands_doc: Dict[str, Any] = {}

        # Extracted structures used by Protocol(...)
        self.constants: Dict[str, Any] = {}
        self.records: Dict[str, Any] = {}
        self.markers: list[Dict[str, Any]] = []
        self.commands: Dict[str, Any] = {}

        # File fingerprints (filename -> sha256 hex)
        self.file_hashes: Dict[str, str] = {}

    def load_all(self) -> None:
        # Ensure required files exist + compute hashes
        self.file_hashes.clear()
        for fn in self.REQUIRED_FILES:
            path = self.config_dir / fn
            if not path.exists():
                raise FileNotFoundError(f"Protocol file not found: {path}")
            self.file_hashes[fn] = sha256_file(path)

        # Load YAML documents
        self.constants_doc = self._load_yaml("constants.yml")
        self.records_doc = self._load_yaml("records.yml")
        self.markers_doc = self._load_yaml("markers.yml")
        self.commands_doc = self._load_yaml("commands.yml")

        # Extract payloads
        self.constants = self.constants_doc
        self.records = self.records_doc.get("records")
        self.markers = self.markers_doc.get("markers", []) or []
        self.commands = self.commands_doc.get("commands", {}) or {}

        # Basic shape validation
        if not isinstance(self.constants, dict):
            raise ValueError("constants.yml must be a mapping")
        if not isinstance(self.records, dict) or not self.records:
            raise ValueError("records.yml must contain a non-empty 'records' mapping")
        if not isinstance(self.markers, list):
            raise ValueError("markers.yml must contain 'markers' list")
        if not isinstance(self.commands, dict):
            raise ValueError("commands.yml must contain 'commands' mapping")

        for key in ("service_uuid", "characteristic_uuid"):
            if not self.constants.get(key):
                raise ValueError(f"constants.yml is missing '{key}'")

    def variant(self) -> str:
        """Variant name, defaulting to the directory name."""
        return str(self.constants.get("variant") or self.config_dir.name)

    def protocol_version(self) -> int:
        """
        Canonical wire protocol version.
        Defaults to 0 if not specified.
        """
        v = self.constants.get("protocol_version", 0)
        try:
            return int(v)
        except Exception:
            raise ValueError(f"Invalid protocol version in constants.yml: {v!r}")

    def _load_yaml(self, filename: str) -> Dict[str, Any]:
        path = self.config_dir / filename
        with open(path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
