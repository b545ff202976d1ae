"""Section interface shared by all pipe components."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class Section(ABC):
    """A pipe stage that consumes an input stream and feeds an output sink.

    ``input`` is an async iterator of messages, ``output`` has an async
    ``send`` method, and ``section_chan`` is the section's command channel.
    """

    @abstractmethod
    async def start(self, input: Any, output: Any, section_chan: Any) -> None:
        """Run the section until it stops; raise SectionError on failure."""