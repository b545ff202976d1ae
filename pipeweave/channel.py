"""Async channels used to glue pipe sections together."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ChannelClosed(Exception):
    """Raised when sending on, or receiving from, a closed and drained channel."""


class _State:
    __slots__ = ("items", "capacity", "closed", "getters", "putters")

    def __init__(self, capacity: int | None) -> None:
        self.items: deque[Any] = deque()
        self.capacity = capacity
        self.closed = False
        self.getters: deque[asyncio.Future[None]] = deque()
        self.putters: deque[asyncio.Future[None]] = deque()

    @staticmethod
    def wake(waiters: deque[asyncio.Future[None]]) -> None:
        while waiters:
            waiter = waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

    def has_room(self) -> bool:
        return self.capacity is None or len(self.items) < self.capacity


class Sender(Generic[T]):
    """Sending half of a channel."""

    def __init__(self, state: _State) -> None:
        self._state = state

    async def send(self, item: T) -> None:
        """Send ``item``, waiting for room on a bounded channel."""
        state = self._state
        while True:
            if state.closed:
                raise ChannelClosed("channel closed")
            if state.has_room():
                state.items.append(item)
                state.wake(state.getters)
                return
            waiter = asyncio.get_running_loop().create_future()
            state.putters.append(waiter)
            await waiter

    def close(self) -> None:
        """Close the channel; queued items can still be received."""
        state = self._state
        state.closed = True
        state.wake(state.getters)
        state.wake(state.putters)

    @property
    def closed(self) -> bool:
        return self._state.closed


class Receiver(Generic[T]):
    """Receiving half of a channel; also an async iterator."""

    def __init__(self, state: _State) -> None:
        self._state = state

    async def recv(self) -> T:
        """Receive the next item; raise ChannelClosed once closed and drained."""
        state = self._state
        while True:
            if state.items:
                item = state.items.popleft()
                state.wake(state.putters)
                return item
            if state.closed:
                raise ChannelClosed("channel closed")
            waiter = asyncio.get_running_loop().create_future()
            state.getters.append(waiter)
            await waiter

    def __aiter__(self) -> Receiver[T]:
        return self

    async def __anext__(self) -> T:
        try:
            return await self.recv()
        except ChannelClosed:
            raise StopAsyncIteration from None


def channel(buf_size: int) -> tuple[Sender[Any], Receiver[Any]]:
    """Create a bounded channel holding at most ``buf_size`` items."""
    if buf_size < 1:
        raise ValueError("buffer size must be at least 1")
    state = _State(buf_size)
    return Sender(state), Receiver(state)


def unbounded_channel() -> tuple[Sender[Any], Receiver[Any]]:
    """Create a channel whose sends never wait."""
    state = _State(None)
    return Sender(state), Receiver(state)