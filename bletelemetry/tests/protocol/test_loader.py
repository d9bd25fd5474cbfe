from pathlib import Path

import pytest
import yaml

from bletelemetry.protocol.loader import ProtocolLoader


def _write(dirp: Path, name: str, text: str) -> None:
    (dirp / name).write_text(text, encoding="utf-8")


def _write_valid_protocol(dirp: Path) -> None:
    _write(
        dirp,
        "constants.yml",
        "protocol_version: 3\nservice_uuid: FFE0\ncharacteristic_uuid: FFE1\n",
    )
    _write(dirp, "records.yml", "records:\n  live: {tag: 'DATA:'}\n")
    _write(dirp, "markers.yml", "markers: []\n")
    _write(dirp, "commands.yml", "commands: {GET_STATUS: {}}\n")


def test_load_all_requires_all_files(tmp_path: Path) -> None:
    _write_valid_protocol(tmp_path)
    (tmp_path / "markers.yml").unlink()

    loader = ProtocolLoader(tmp_path)

    with pytest.raises(FileNotFoundError):
        loader.load_all()


def test_load_all_populates_structures_and_hashes(tmp_path: Path) -> None:
    _write_valid_protocol(tmp_path)

    loader = ProtocolLoader(tmp_path)
    loader.load_all()

    assert loader.protocol_version() == 3
    assert loader.records == {"live": {"tag": "DATA:"}}
    assert loader.markers == []
    assert loader.commands == {"GET_STATUS": {}}
    assert loader.variant() == tmp_path.name

    assert set(loader.file_hashes) == set(loader.REQUIRED_FILES)
    for h in loader.file_hashes.values():
        assert isinstance(h, str) and len(h) == 64


def test_hash_changes_with_content(tmp_path: Path) -> None:
    _write_valid_protocol(tmp_path)
    loader = ProtocolLoader(tmp_path)
    loader.load_all()
    before = dict(loader.file_hashes)

    _write(tmp_path, "commands.yml", "commands: {GET_STATUS: {}, RESET: {}}\n")
    loader.load_all()

    assert loader.file_hashes["commands.yml"] != before["commands.yml"]
    assert loader.file_hashes["records.yml"] == before["records.yml"]


def test_empty_markers_file_is_allowed(tmp_path: Path) -> None:
    _write_valid_protocol(tmp_path)
    _write(tmp_path, "markers.yml", "")

    loader = ProtocolLoader(tmp_path)
    loader.load_all()

    assert loader.markers == []


@pytest.mark.parametrize(
    "name, text",
    [
        ("records.yml", "invalid: true\n"),
        ("records.yml", "records: {}\n"),
        ("markers.yml", "markers: {a: 1}\n"),
        ("commands.yml", "commands: [GET_STATUS]\n"),
        ("constants.yml", "protocol_version: 1\nservice_uuid: FFE0\n"),
    ],
)
def test_load_all_rejects_bad_shapes(tmp_path: Path, name: str, text: str) -> None:
    _write_valid_protocol(tmp_path)
    _write(tmp_path, name, text)

    with pytest.raises(ValueError):
        ProtocolLoader(tmp_path).load_all()


def test_invalid_yaml_propagates(tmp_path: Path) -> None:
    _write_valid_protocol(tmp_path)
    _write(tmp_path, "records.yml", "records: [unclosed\n")

    with pytest.raises(yaml.YAMLError):
        ProtocolLoader(tmp_path).load_all()


def test_invalid_protocol_version(tmp_path: Path) -> None:
    _write_valid_protocol(tmp_path)
    _write(tmp_path, "constants.yml", "protocol_version: abc\nservice_uuid: a\ncharacteristic_uuid: b\n")

    loader = ProtocolLoader(tmp_path)
    loader.load_all()

    with pytest.raises(ValueError):
        loader.protocol_version()
