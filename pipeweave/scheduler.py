"""Pipe scheduler: runs, replaces and restarts pipes by id."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pipeweave.channel import ChannelClosed, Receiver, Sender, channel
from pipeweave.command_channel import (
    ChanError,
    Log,
    RetrieveState,
    RootChannel,
    SectionChannel,
    Stop,
    Stopped,
    StoreState,
)
from pipeweave.config import Config
from pipeweave.errors import SectionError
from pipeweave.pipe import Pipe
from pipeweave.registry import Registry
from pipeweave.storage import Storage

logger = logging.getLogger(__name__)

RESCHEDULE_DELAY = 3.0


class ScheduleResult(Enum):
    """Outcome of adding a pipe."""

    NEW = "new"
    UPDATED = "updated"
    NOOP = "noop"


@dataclass
class _AddPipe:
    pipe_id: int
    config: Config
    reply: asyncio.Future[Any]


@dataclass
class _RemovePipe:
    pipe_id: int
    reply: asyncio.Future[Any]


@dataclass
class _Shutdown:
    reply: asyncio.Future[Any]


@dataclass
class _ListIds:
    reply: asyncio.Future[Any]


@dataclass
class _Reschedule:
    pipe_id: int


def _resolve(future: asyncio.Future[Any], value: Any) -> None:
    if not future.done():
        future.set_result(value)


def _fail(future: asyncio.Future[Any], exc: BaseException) -> None:
    if not future.done():
        future.set_exception(exc)


class _Idle:
    """Input stream that never yields."""

    def __aiter__(self) -> _Idle:
        return self

    async def __anext__(self) -> Any:
        await asyncio.Event().wait()
        raise StopAsyncIteration


class _Discard:
    """Output sink that drops everything."""

    async def send(self, item: Any) -> None:
        return None


async def _run_pipe(pipe: Pipe, chan: SectionChannel) -> None:
    try:
        await pipe.start(_Idle(), _Discard(), chan)
    finally:
        chan.close()


class Scheduler:
    """Keeps configured pipes running and persists their state."""

    def __init__(
        self,
        registry: Registry,
        storage: Storage,
        *,
        state_factory: Callable[[], Any] = dict,
        reschedule_delay: float = RESCHEDULE_DELAY,
    ) -> None:
        self._registry = registry
        self._storage = storage
        self._state_factory = state_factory
        self._reschedule_delay = reschedule_delay
        self._pipe_configs: dict[int, Config] = {}
        self._pipes: dict[int, asyncio.Task[None] | None] = {}
        self._root_chan = RootChannel()
        self._background: set[asyncio.Task[None]] = set()
        self._tx: Sender[Any] | None = None

    def spawn(self) -> SchedulerHandle:
        """Start the scheduler loop on the running event loop."""
        tx, rx = channel(8)
        self._tx = tx
        task = asyncio.get_running_loop().create_task(self._run(rx))
        return SchedulerHandle(tx, task)

    async def _run(self, rx: Receiver[Any]) -> None:
        try:
            await self._enter_loop(rx)
        except Exception:
            logger.exception("scheduler stopped with an error")
        finally:
            assert self._tx is not None
            self._tx.close()
            for task in list(self._background):
                task.cancel()
            for task in self._pipes.values():
                if task is not None and not task.done():
                    task.cancel()
            while True:
                try:
                    message = await rx.recv()
                except ChannelClosed:
                    break
                reply = getattr(message, "reply", None)
                if reply is not None:
                    _fail(reply, SectionError("scheduler stopped"))

    async def _enter_loop(self, rx: Receiver[Any]) -> None:
        loop = asyncio.get_running_loop()
        messages = loop.create_task(rx.recv())
        requests = loop.create_task(self._root_chan.recv())
        try:
            while True:
                done, _ = await asyncio.wait(
                    {messages, requests}, return_when=asyncio.FIRST_COMPLETED
                )
                if messages in done:
                    try:
                        message = messages.result()
                    except ChannelClosed:
                        return
                    messages = loop.create_task(rx.recv())
                    if isinstance(message, _Shutdown):
                        _resolve(message.reply, None)
                        return
                    await self._handle_message(message)
                if requests in done:
                    request = requests.result()
                    requests = loop.create_task(self._root_chan.recv())
                    await self._handle_request(request)
        finally:
            messages.cancel()
            requests.cancel()

    async def _handle_message(self, message: Any) -> None:
        if isinstance(message, _Reschedule):
            if message.pipe_id not in self._pipes:
                try:
                    self._schedule(message.pipe_id)
                except SectionError as exc:
                    logger.error("failed to reschedule pipe %s: %s", message.pipe_id, exc)
            return
        try:
            match message:
                case _AddPipe(pipe_id=pipe_id, config=config):
                    result = await self._add_pipe(pipe_id, config)
                case _RemovePipe(pipe_id=pipe_id):
                    await self._remove_pipe(pipe_id)
                    result = None
                case _ListIds():
                    result = list(self._pipe_configs)
                case _:
                    raise SectionError(f"unexpected message: {message!r}")
        except Exception as exc:
            _fail(message.reply, exc)
            if not isinstance(exc, SectionError):
                raise
        else:
            _resolve(message.reply, result)

    async def _handle_request(self, request: Any) -> None:
        match request:
            case RetrieveState(id=pipe_id):
                state = await self._storage.retrieve_state(pipe_id)
                try:
                    await request.reply(state)
                except ChanError:
                    pass
            case StoreState(id=pipe_id, state=state):
                await self._storage.store_state(pipe_id, state)
                try:
                    await request.reply()
                except ChanError:
                    pass
            case Log(id=pipe_id, message=text):
                logger.info("pipe<%s>: %s", pipe_id, text)
            case Stopped(id=pipe_id):
                task = self._pipes.get(pipe_id)
                if task is None or task.done():
                    self._retrieve_pipe_error(pipe_id)
                    await self._unschedule(pipe_id)
                    self._reschedule(pipe_id)

    async def _add_pipe(self, pipe_id: int, config: Config) -> ScheduleResult:
        existing = self._pipe_configs.get(pipe_id)
        if existing is None:
            result = ScheduleResult.NEW
        elif existing == config:
            return ScheduleResult.NOOP
        else:
            await self._remove_pipe(pipe_id)
            result = ScheduleResult.UPDATED
        self._pipe_configs[pipe_id] = config
        self._schedule(pipe_id)
        return result

    async def _remove_pipe(self, pipe_id: int) -> None:
        self._pipe_configs.pop(pipe_id, None)
        await self._unschedule(pipe_id)

    def _schedule(self, pipe_id: int) -> None:
        config = self._pipe_configs.get(pipe_id)
        if config is None:
            return
        pipe = Pipe.from_config(config, self._registry)
        chan = self._root_chan.add_section(pipe_id)
        task = asyncio.get_running_loop().create_task(_run_pipe(pipe, chan))
        self._pipes[pipe_id] = task

    async def _unschedule(self, pipe_id: int) -> None:
        try:
            await self._root_chan.send(pipe_id, Stop())
        except ChanError:
            pass
        task = self._pipes.pop(pipe_id, None)
        if task is not None:
            task.cancel()
        try:
            self._root_chan.remove_section(pipe_id)
        except ChanError:
            pass

    def _reschedule(self, pipe_id: int) -> None:
        tx = self._tx
        delay = self._reschedule_delay

        async def later() -> None:
            await asyncio.sleep(delay)
            if tx is not None and not tx.closed:
                try:
                    await tx.send(_Reschedule(pipe_id))
                except ChannelClosed:
                    pass

        task = asyncio.get_running_loop().create_task(later())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _retrieve_pipe_error(self, pipe_id: int) -> None:
        task = self._pipes.get(pipe_id)
        if task is None or not task.done():
            return
        self._pipes[pipe_id] = None
        if task.cancelled():
            logger.error("pipe with id: %s stopped: cancelled", pipe_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("pipe with id: %s stopped: %r", pipe_id, exc)


class SchedulerHandle:
    """Client side of a running scheduler."""

    def __init__(self, tx: Sender[Any], task: asyncio.Task[None]) -> None:
        self._tx = tx
        self._task = task

    async def _call(self, make: Callable[[asyncio.Future[Any]], Any]) -> Any:
        reply: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        try:
            await self._tx.send(make(reply))
        except ChannelClosed as exc:
            raise SectionError("scheduler is not running") from exc
        return await reply

    async def add_pipe(self, pipe_id: int, config: Config) -> ScheduleResult:
        """Schedule a pipe; an equal config is a no-op, a new one replaces the old."""
        return await self._call(lambda reply: _AddPipe(pipe_id, config, reply))

    async def remove_pipe(self, pipe_id: int) -> None:
        """Stop and forget a pipe."""
        await self._call(lambda reply: _RemovePipe(pipe_id, reply))

    async def list_ids(self) -> list[int]:
        """Return the ids of configured pipes."""
        return await self._call(_ListIds)

    async def shutdown(self) -> None:
        """Stop the scheduler and all its pipes."""
        await self._call(_Shutdown)
        await asyncio.wait({self._task})