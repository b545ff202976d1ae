"""Command channels between the runtime and its sections.

A root channel owns one command sender per section and receives requests
(state retrieval and storage, log lines, stop notices) from all of them.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from pipeweave.channel import ChannelClosed, Receiver, Sender, unbounded_channel
from pipeweave.errors import SectionError


class ChanError(SectionError):
    """Failure of a command channel operation."""


class Closed(ChanError):
    """The other end of the channel is gone."""


class SectionExists(ChanError):
    """A section with this id is already attached to the root channel."""


class NoSuchSection(ChanError):
    """No section with this id is attached to the root channel."""


@dataclass(frozen=True)
class Stop:
    """Command asking a section to stop."""


@dataclass(frozen=True)
class Ack:
    """Command acknowledging a message, carrying an arbitrary payload."""

    payload: Any


Command = Stop | Ack


class OneshotReply:
    """One-time reply slot handed to the receiver of a request."""

    __slots__ = ("_future",)

    def __init__(self, future: asyncio.Future[Any]) -> None:
        self._future = future

    async def reply(self, value: Any) -> None:
        """Deliver ``value``; raise Closed if already answered or abandoned."""
        if self._future.done():
            raise Closed("reply channel closed")
        self._future.set_result(value)


@dataclass
class RetrieveState:
    """Request from a section for its stored state."""

    id: int
    reply_to: OneshotReply

    async def reply(self, state: Any) -> None:
        await self.reply_to.reply(state)


@dataclass
class StoreState:
    """Request from a section to persist its state."""

    id: int
    state: Any
    reply_to: OneshotReply

    async def reply(self) -> None:
        await self.reply_to.reply(None)


@dataclass
class Log:
    """Log line emitted by a section."""

    id: int
    message: str


@dataclass
class Stopped:
    """Notice that a section channel has been closed."""

    id: int


SectionRequest = RetrieveState | StoreState | Log | Stopped


class RootChannel:
    """Runtime side: routes commands to sections and receives their requests."""

    def __init__(self) -> None:
        self._requests: asyncio.Queue[SectionRequest] = asyncio.Queue()
        self._section_handles: dict[int, Sender[Command]] = {}

    def add_section(self, section_id: int) -> SectionChannel:
        """Attach a new section and return its channel."""
        if section_id in self._section_handles:
            raise SectionExists(f"section {section_id} already exists")
        tx, rx = unbounded_channel()
        self._section_handles[section_id] = tx
        return SectionChannel(section_id, self._requests, rx, tx)

    def remove_section(self, section_id: int) -> None:
        """Detach a section; its pending receive then fails with Closed."""
        handle = self._section_handles.pop(section_id, None)
        if handle is None:
            raise NoSuchSection(f"no section {section_id}")
        handle.close()

    async def recv(self) -> SectionRequest:
        """Wait for the next request from any section."""
        return await self._requests.get()

    async def send(self, section_id: int, command: Command) -> None:
        """Send ``command`` to the section with ``section_id``."""
        handle = self._section_handles.get(section_id)
        if handle is None:
            raise NoSuchSection(f"no section {section_id}")
        try:
            await handle.send(command)
        except ChannelClosed as exc:
            raise Closed("section channel closed") from exc


class SectionChannel:
    """Section side: asks the runtime for state and receives commands."""

    def __init__(
        self,
        section_id: int,
        requests: asyncio.Queue[SectionRequest],
        rx: Receiver[Command],
        weak_tx: Sender[Command],
    ) -> None:
        self.id = section_id
        self._requests = requests
        self._rx = rx
        self._weak_tx = weak_tx
        self._closed = False

    def _ensure_open(self) -> None:
        if self._closed:
            raise Closed("section channel closed")

    async def _request(self, build: Any) -> Any:
        self._ensure_open()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._requests.put_nowait(build(OneshotReply(future)))
        return await future

    async def retrieve_state(self) -> Any:
        """Ask the runtime for this section's stored state (None if absent)."""
        return await self._request(lambda reply_to: RetrieveState(self.id, reply_to))

    async def store_state(self, state: Any) -> None:
        """Ask the runtime to persist ``state`` for this section."""
        await self._request(lambda reply_to: StoreState(self.id, state, reply_to))

    async def log(self, message: Any) -> None:
        """Send a log line to the runtime."""
        self._ensure_open()
        self._requests.put_nowait(Log(self.id, str(message)))

    async def recv(self) -> Command:
        """Wait for the next command from the runtime."""
        try:
            return await self._rx.recv()
        except ChannelClosed as exc:
            raise Closed("command channel closed") from exc

    def weak_chan(self) -> WeakSectionChannel:
        """Return a handle that can send acks to this section."""
        return WeakSectionChannel(self._weak_tx)

    def close(self) -> None:
        """Close the channel and notify the runtime that the section stopped."""
        if self._closed:
            return
        self._closed = True
        self._weak_tx.close()
        self._requests.put_nowait(Stopped(self.id))


class WeakSectionChannel:
    """Ack sender that silently does nothing once its section is gone."""

    def __init__(self, tx: Sender[Command]) -> None:
        self._tx = tx

    async def ack(self, payload: Any) -> None:
        """Deliver an Ack command carrying ``payload`` if the section is alive."""
        try:
            await self._tx.send(Ack(payload))
        except ChannelClosed:
            pass