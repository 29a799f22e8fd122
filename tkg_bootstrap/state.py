"""
Per-installation state store.

Each provisioned AWS resource keeps its raw creation response in one JSON
file inside a directory owned by a single installation tag. A usable record
means "already created, reuse it". Identifiers are never stored on their
own: they are pulled out of the record with a lookup expression every time
they are needed, so the record stays the single source of truth.
"""

import json
import os
import re
from pathlib import Path
from typing import Any

from .console import fatal

TAG_FILE = "TKG_INSTALL_TAG"
RECORD_SUFFIX = ".json"

_TOKEN = re.compile(r"([^.\[\]]+)|\[(\d+)\]")


def lookup(data: Any, expression: str) -> Any:
    """Resolve a dotted path such as ``Reservations[0].Instances[0].PublicIpAddress``.

    Returns None when any step of the path is missing.
    """
    current = data
    for name, index in _TOKEN.findall(expression):
        if name:
            if not isinstance(current, dict) or name not in current:
                return None
            current = current[name]
        else:
            position = int(index)
            if not isinstance(current, list) or position >= len(current):
                return None
            current = current[position]
    return current


def strip_metadata(response: dict) -> dict:
    return {k: v for k, v in response.items() if k != "ResponseMetadata"}


def check_tag(state_dir: Path, recorded: str, tag: str):
    if recorded != tag:
        fatal(
            f"TKG_INSTALL_TAG value '{recorded}' for state directory {state_dir} "
            f"does not match supplied value '{tag}'"
        )


class StateStore:
    """Directory of resource records keyed by installation tag."""

    def __init__(self, state_dir: Path, tag: str):
        self.state_dir = Path(state_dir)
        self.tag = tag

    # ─── opening ───

    @classmethod
    def open(cls, state_dir: Path | str, tag: str) -> "StateStore":
        """Open (or create) the state directory for ``tag``.

        An existing directory must have been created for the same tag.
        """
        state_dir = Path(state_dir)
        tag_file = state_dir / TAG_FILE

        if state_dir.is_dir():
            if not tag_file.is_file():
                fatal(f"State directory {state_dir} has no {TAG_FILE} file")
            check_tag(state_dir, tag_file.read_text().strip(), tag)
        else:
            state_dir.mkdir(parents=True, exist_ok=True)
            tag_file.write_text(tag)

        return cls(state_dir, tag)

    @classmethod
    def attach(cls, state_dir: Path | str, expected_tag: str = "") -> "StateStore":
        """Open an existing state directory, taking the tag from disk.

        When ``expected_tag`` is given it must match the recorded tag.
        """
        state_dir = Path(state_dir)
        if not state_dir.is_dir():
            fatal(f"State directory {state_dir} not found")
        tag_file = state_dir / TAG_FILE
        if not tag_file.is_file():
            fatal(f"Installation tag file {tag_file} not found")
        tag = tag_file.read_text().strip()
        if not tag:
            fatal(f"Installation tag file {tag_file} is empty")
        if expected_tag:
            check_tag(state_dir, tag, expected_tag)
        return cls(state_dir, tag)

    # ─── records ───

    def record_path(self, key: str) -> Path:
        return self.state_dir / f"{key}{RECORD_SUFFIX}"

    def path(self, name: str) -> Path:
        return self.state_dir / name

    def usable(self, key: str) -> bool:
        path = self.record_path(key)
        if not path.is_file() or not os.access(path, os.R_OK):
            return False
        return bool(path.read_text().strip())

    def read(self, key: str) -> Any:
        path = self.record_path(key)
        if not self.usable(key):
            fatal(f"State record '{path}' does not exist, is empty or can't be read!")
        try:
            return json.loads(path.read_text())
        except json.JSONDecodeError as e:
            fatal(f"State record '{path}' is not valid JSON: {e}")

    def write(self, key: str, data: Any):
        if isinstance(data, dict):
            data = strip_metadata(data)
        self.record_path(key).write_text(json.dumps(data, indent=2, default=str))

    def delete(self, key: str):
        self.record_path(key).unlink(missing_ok=True)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(
            p.name[:-len(RECORD_SUFFIX)]
            for p in self.state_dir.glob(f"{prefix}*{RECORD_SUFFIX}")
        )

    def find_id(self, key: str, expression: str) -> str:
        """Extract an identifier from a record; any failure is fatal."""
        value = lookup(self.read(key), expression)
        if value is None or value == "" or isinstance(value, (dict, list)):
            fatal(f"Failed to extract '{expression}' from {self.record_path(key)}")
        return str(value)

    # ─── raw files ───

    def write_private(self, name: str, text: str) -> Path:
        path = self.path(name)
        path.unlink(missing_ok=True)
        path.write_text(text)
        path.chmod(0o400)
        return path

    def write_text(self, name: str, text: str) -> Path:
        path = self.path(name)
        path.write_text(text)
        return path

    def remove_file(self, name: str):
        self.path(name).unlink(missing_ok=True)
