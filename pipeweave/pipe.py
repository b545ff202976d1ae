"""A pipe: a chain of sections run as one section."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Callable, MutableMapping
from typing import Any

from pipeweave.channel import channel
from pipeweave.command_channel import (
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
from pipeweave.registry import Registry
from pipeweave.types import Section


def _state_get(state: Any, key: str) -> Any:
    if isinstance(state, MutableMapping):
        return state.get(key)
    return state.get(key, type(state))


def _state_set(state: Any, key: str, value: Any) -> None:
    if isinstance(state, MutableMapping):
        state[key] = value
    else:
        state.set(key, value)


async def _run_section(
    section: Section,
    input: Any,
    output: Any,
    chan: SectionChannel,
    close_output: Callable[[], None] | None,
) -> None:
    try:
        await section.start(input, output, chan)
    finally:
        if close_output is not None:
            close_output()
        chan.close()


class Pipe(Section):
    """Sections wired output-to-input, supervised as a single section.

    The pipe keeps one combined state holding each section's state under
    the section's position, and persists it through its own channel.
    """

    def __init__(
        self,
        config: Config,
        sections: list[Section],
        *,
        state_factory: Callable[[], Any] = dict,
    ) -> None:
        self.config = config
        self._sections: list[Section] | None = list(sections)
        self._state_factory = state_factory

    @classmethod
    def from_config(cls, config: Config, registry: Registry) -> Pipe:
        """Build each configured section with its registered constructor."""
        sections = []
        for section_cfg in config.sections():
            if "name" not in section_cfg:
                raise SectionError("section needs to have a name")
            name = section_cfg["name"]
            if not isinstance(name, str):
                raise SectionError("section name should be string")
            constructor = registry.get_constructor(name)
            if constructor is None:
                raise SectionError(f"no constructor for '{name}' available")
            sections.append(constructor(section_cfg))
        return cls(config, sections)

    def __repr__(self) -> str:
        count = len(self._sections) if self._sections is not None else 0
        return f"Pipe(config={self.config!r}, sections={['<Section>'] * count!r})"

    async def start(self, input: Any, output: Any, section_chan: Any) -> None:
        """Run all sections until one stops or a Stop command arrives."""
        if self._sections is None:
            raise SectionError("pipe already started")
        sections, self._sections = self._sections, None
        loop = asyncio.get_running_loop()
        root = RootChannel()
        handles: list[asyncio.Task[None]] = []
        upstream = input
        last = len(sections) - 1
        for pos, section in enumerate(sections):
            if pos == last:
                sink, next_input, close_sink = output, None, None
            else:
                tx, rx = channel(1)
                sink, next_input, close_sink = tx, rx, tx.close
            chan = root.add_section(pos)
            handles.append(
                loop.create_task(_run_section(section, upstream, sink, chan, close_sink))
            )
            upstream = next_input
        try:
            await self._supervise(root, handles, section_chan)
        finally:
            for handle in handles:
                if not handle.done():
                    handle.cancel()
            await asyncio.gather(*handles, return_exceptions=True)

    async def _supervise(
        self,
        root: RootChannel,
        handles: list[asyncio.Task[None]],
        section_chan: Any,
    ) -> None:
        state = await section_chan.retrieve_state()
        if state is None:
            state = self._state_factory()
        running = dict(enumerate(handles))
        loop = asyncio.get_running_loop()
        requests = loop.create_task(root.recv())
        commands = loop.create_task(section_chan.recv())
        try:
            while True:
                done, _ = await asyncio.wait(
                    {requests, commands}, return_when=asyncio.FIRST_COMPLETED
                )
                if requests in done:
                    request = requests.result()
                    requests = loop.create_task(root.recv())
                    match request:
                        case StoreState(id=section_id, state=section_state):
                            _state_set(state, str(section_id), section_state)
                            await section_chan.store_state(copy.deepcopy(state))
                            await request.reply()
                        case RetrieveState(id=section_id):
                            await request.reply(_state_get(state, str(section_id)))
                        case Log(id=section_id, message=message):
                            await section_chan.log(f"section_id<id: {section_id}>: {message}")
                        case Stopped(id=section_id):
                            task = running.pop(section_id, None)
                            if task is None:
                                return
                            await asyncio.wait({task})
                            if task.cancelled():
                                raise SectionError(f"section {section_id} was cancelled")
                            task.result()
                            return
                if commands in done:
                    command = commands.result()
                    commands = loop.create_task(section_chan.recv())
                    if isinstance(command, Stop):
                        return
        finally:
            requests.cancel()
            commands.cancel()