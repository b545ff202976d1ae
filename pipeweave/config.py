"""Dynamic pipe configuration.

A pipe is described as a list of sections, each section being a mapping of
configuration values.  Values are restricted to maps, arrays, strings,
booleans and 64-bit integers.
"""

from __future__ import annotations

import json
import tomllib
from typing import Any

from pipeweave.errors import SectionError

_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1


def convert_value(value: Any) -> Any:
    """Convert a parsed JSON or TOML value into a configuration value.

    Raises SectionError for anything that is not a map, array, string,
    boolean or 64-bit integer.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if not _I64_MIN <= value <= _I64_MAX:
            raise SectionError(f"unsupported value type {value!r}")
        return value
    if isinstance(value, (list, tuple)):
        return [convert_value(item) for item in value]
    if isinstance(value, dict):
        converted = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise SectionError(f"unsupported key type {key!r}")
            converted[key] = convert_value(item)
        return converted
    raise SectionError(f"unsupported value type {value!r}")


class Config:
    """Pipe configuration: an ordered list of section maps."""

    __slots__ = ("_sections",)

    def __init__(self, sections: list[dict[str, Any]] | None = None) -> None:
        self._sections: list[dict[str, Any]] = list(sections or [])

    @classmethod
    def from_value(cls, value: Any) -> Config:
        """Build a config from an array of section maps."""
        if not isinstance(value, list):
            raise SectionError(f"expected array, got: {value!r}")
        sections = []
        for section in value:
            if not isinstance(section, dict):
                raise SectionError("pipe section configuration should be of map type")
            sections.append(dict(section))
        return cls(sections)

    @classmethod
    def from_json(cls, text: str) -> Config:
        """Parse a JSON array of section objects."""
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise SectionError(str(exc)) from exc
        return cls.from_value(convert_value(raw))

    @classmethod
    def from_toml(cls, text: str) -> Config:
        """Parse a TOML document holding a ``[[section]]`` array of tables."""
        try:
            raw = tomllib.loads(text)
        except tomllib.TOMLDecodeError as exc:
            raise SectionError(str(exc)) from exc
        value = convert_value(raw)
        if not isinstance(value, dict):
            raise SectionError(f"unsupported value: {value!r}")
        return cls.from_value(value.pop("section", []))

    def sections(self) -> list[dict[str, Any]]:
        """Return the section maps in pipe order."""
        return list(self._sections)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Config):
            return NotImplemented
        return self._sections == other._sections

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"Config(sections={self._sections!r})"