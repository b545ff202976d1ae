"""Mapping from section names to section constructors."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from pipeweave.types import Section

Constructor = Callable[[dict[str, Any]], Section]


class Registry:
    """Named section constructors used to build pipes from configs."""

    def __init__(self) -> None:
        self._constructors: dict[str, Constructor] = {}

    def register_section(self, name: str, constructor: Constructor) -> None:
        """Register (or replace) the constructor for ``name``."""
        self._constructors[name] = constructor

    def unregister_section(self, name: str) -> None:
        """Forget the constructor for ``name``, if any."""
        self._constructors.pop(name, None)

    def get_constructor(self, name: str) -> Constructor | None:
        """Return the constructor for ``name``, or None when unknown."""
        return self._constructors.get(name)

    def __repr__(self) -> str:
        return "Registry {}"