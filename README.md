# pipeweave

An asyncio runtime for data pipes. A pipe is an ordered list of *sections*
described by a plain configuration. The runtime builds each section from a
registry of constructors, wires consecutive sections together with channels,
and runs pipes under a scheduler that restarts them when they stop and hands
their state to a storage backend.

The package has no third-party dependencies.

## Configuration

`pipeweave.config.Config` holds a pipe's sections as a list of mappings.
It can be read from TOML (a `[[section]]` array of tables) or from JSON (an
array of objects):

```python
from pipeweave.config import Config

toml_config = Config.from_toml("""
[[section]]
name = "name"
key = "key"

[[section]]
name = "name2"
value = "value"
""")

json_config = Config.from_json("""
[
    {"name": "name", "key": "key"},
    {"name": "name2", "value": "value"}
]
""")

assert toml_config == json_config
print(toml_config.sections())
```

Allowed values are strings, booleans, 64-bit integers, arrays and tables.
Anything else (floats, dates, null, out-of-range integers), malformed input,
or a section that is not a table raises `pipeweave.errors.SectionError`.
A TOML document without a `section` key gives an empty config.
`convert_value` and `Config.from_value` do the same checks on values that
are already parsed.

## Sections

A section subclasses `pipeweave.types.Section` and implements the coroutine
`start(input, output, section_chan)`: `input` is an async iterator of
messages, `output` has an async `send`, and `section_chan` is the section's
`SectionChannel`.

```python
from pipeweave.types import Section

class Upper(Section):
    async def start(self, input, output, section_chan):
        await section_chan.log("starting")
        async for message in input:
            await output.send(message.upper())
```

## Registry

`pipeweave.registry.Registry` maps section names to constructors. A
constructor takes a section's configuration mapping and returns a `Section`:

```python
from pipeweave.registry import Registry

registry = Registry()
registry.register_section("upper", lambda cfg: Upper())
registry.get_constructor("upper")    # the lambda
registry.unregister_section("upper")
registry.get_constructor("upper")    # None
```

## Pipes

`pipeweave.pipe.Pipe` is itself a section. `Pipe.from_config(config, registry)`
looks up each section's `name` in the registry and calls its constructor;
a missing name, a non-string name or an unknown name raises `SectionError`.

`Pipe.start(input, output, section_chan)` runs every section as its own task:
the first reads the pipe's input, the last writes to the pipe's output, and
the ones between are joined by channels holding one message. The pipe keeps
one combined state (a `dict` unless another `state_factory` is given) with
each section's state under its position as a string, and on every store
request passes a copy of the whole state to its own `section_chan`. Log lines
from sections are forwarded prefixed with `section_id<id: N>:`. The pipe
returns when any section stops (re-raising that section's error) or when a
`Stop` command arrives; remaining section tasks are cancelled. A pipe can be
started only once.

## Scheduling

`pipeweave.scheduler.Scheduler(registry, storage)` runs pipes by id.
`spawn()` starts it on the running event loop and returns a `SchedulerHandle`:

```python
from pipeweave.scheduler import Scheduler, ScheduleResult
from pipeweave.storage import Storage

class MemoryStorage(Storage):
    def __init__(self):
        self.states = {}

    async def store_state(self, pipe_id, state):
        self.states[pipe_id] = state

    async def retrieve_state(self, pipe_id):
        return self.states.get(pipe_id)

handle = Scheduler(registry, MemoryStorage()).spawn()

await handle.add_pipe(1, config)   # ScheduleResult.NEW
await handle.add_pipe(1, config)   # ScheduleResult.NOOP
await handle.add_pipe(1, other)    # ScheduleResult.UPDATED
print(await handle.list_ids())     # [1]
await handle.remove_pipe(1)
await handle.shutdown()
```

Scheduled pipes get an input that never yields and an output that discards
everything, so sources and destinations are expected to be sections in the
pipe. When a pipe stops, its error (if any) is logged and it is started again
after `reschedule_delay` seconds (3 by default) as long as its config is still
present. Pipe log lines go to the `pipeweave.scheduler` logger. Calls on a
handle whose scheduler is no longer running raise `SectionError`.

## State storage

`pipeweave.storage.Storage` is the abstract interface: `store_state(pipe_id,
state)` and `retrieve_state(pipe_id)`, both coroutines.

`pipeweave.sqlite_storage.SqliteStorage` keeps each pipe's state as JSON in
a `state` table of an SQLite database, created if missing. It is opened with
`await open_storage(path)` or `await SqliteStorage.open(path)`, can be used
as an async context manager, and is closed with `close()`. It accepts only
`SqliteState` values; anything else raises `SectionError`.

`SqliteState` holds strings, integers and nested `SqliteState` values:

```python
from pipeweave.sqlite_storage import SqliteState

state = SqliteState()
state.set("key", "value")
state.get("key", str)   # "value"
state.get("key", int)   # None
state.set("key", 64)
state.get("key", int)   # 64
state.set("key", 1.5)   # raises SqliteStateError
```

Since pipes keep their combined state as a `dict` by default, a
`SqliteStorage` fits pipes whose combined state is a `SqliteState`.

## Channels

`pipeweave.channel` provides `channel(buf_size)` and `unbounded_channel()`,
each returning a `Sender` (`send`, `close`, `closed`) and a `Receiver`
(`recv`, async iteration). After `close()`, queued items can still be
received; then `recv` raises `ChannelClosed` and iteration ends.

`pipeweave.command_channel` provides the `RootChannel` / `SectionChannel`
pair used between a runtime and its sections. A `SectionChannel` sends
`RetrieveState`, `StoreState` and `Log` requests, receives `Stop` and `Ack`
commands, hands out a `WeakSectionChannel` for acks, and sends `Stopped`
when closed. Errors are `ChanError` subclasses: `Closed`, `SectionExists`
and `NoSuchSection`.

## What this package does not do

It ships no ready-made sections (no database, file, queue or network
connectors), no command-line program or daemon, and nothing that fetches
pipe configurations from a server. Those are built on top of `Registry`,
`Section`, `Scheduler` and a `Storage`.