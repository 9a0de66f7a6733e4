"""Message transport adapters.

The loader only needs two things from a transport: a source of inbound
messages it can acknowledge, and channels it can publish to.  Delivery is
assumed at-least-once; the loader never deduplicates inbound messages and
tags every outbound one with a fresh ``uniqueMessageId`` instead.

Provided adapters:
- ``MemorySource`` / ``MemoryChannel``: asyncio-queue backed, for embedding
  the loader in another process and for tests.
- ``JsonlFileSource`` / ``JsonlFileChannel``: newline-delimited files, used
  by the CLI and as the dead-letter store.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Protocol

from bqloader.core.logging import get_logger
from bqloader.core.models import StreamMessage

_logger = get_logger("routing.channels")


class InboundSource(Protocol):
    """Where inbound load requests come from."""

    async def receive(self) -> StreamMessage | None:
        """Next message, or ``None`` once the source is closed and drained."""
        ...

    async def ack(self, message: StreamMessage) -> None:
        """Acknowledge that ``message`` has been routed."""
        ...


class OutputChannel(Protocol):
    """Where routed messages go."""

    name: str

    async def publish(self, message: StreamMessage) -> None: ...


# ─── In-memory ─────────────────────────────────────────────────────


class MemorySource:
    """Queue-backed inbound source."""

    def __init__(self, messages: list[StreamMessage] | None = None) -> None:
        self._queue: asyncio.Queue[StreamMessage | None] = asyncio.Queue()
        self._closed = False
        self.acked: list[StreamMessage] = []
        for message in messages or []:
            self._queue.put_nowait(message)

    async def put(self, message: StreamMessage) -> None:
        if self._closed:
            raise RuntimeError("MemorySource is closed")
        await self._queue.put(message)

    def close(self) -> None:
        """Stop accepting messages; receivers see ``None`` after the backlog."""
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)

    async def receive(self) -> StreamMessage | None:
        message = await self._queue.get()
        if message is None:
            # Re-arm the sentinel for every other waiting worker
            self._queue.put_nowait(None)
        return message

    async def ack(self, message: StreamMessage) -> None:
        self.acked.append(message)


class MemoryChannel:
    """Output channel collecting published messages in order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.messages: list[StreamMessage] = []

    async def publish(self, message: StreamMessage) -> None:
        self.messages.append(message)

    def __len__(self) -> int:
        return len(self.messages)


# ─── JSONL files ───────────────────────────────────────────────────


def _encode_record(message: StreamMessage) -> str:
    return json.dumps(
        {
            "attributes": message.attributes,
            "data": message.data.decode("utf-8", errors="backslashreplace"),
        },
        sort_keys=True,
    )


class JsonlFileSource:
    """Reads one load request per non-blank line of a file.

    Each line is the raw request payload.  The whole file is read up
    front; it is meant for bounded batches, not tailing.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        with open(path, "rb") as f:
            self._lines = [line.strip() for line in f if line.strip()]
        self._position = 0
        self.acked = 0

    def __len__(self) -> int:
        return len(self._lines)

    async def receive(self) -> StreamMessage | None:
        if self._position >= len(self._lines):
            return None
        line = self._lines[self._position]
        self._position += 1
        return StreamMessage(data=line, attributes={"sourceLine": str(self._position)})

    async def ack(self, message: StreamMessage) -> None:
        self.acked += 1


class JsonlFileChannel:
    """Appends each published message as one JSON line.

    Lines look like ``{"attributes": {...}, "data": "<payload text>"}``.
    """

    def __init__(self, name: str, path: Path) -> None:
        self.name = name
        self.path = path.expanduser()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.count = 0

    async def publish(self, message: StreamMessage) -> None:
        # Single write per record, no await in between: records never interleave
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(_encode_record(message) + "\n")
        self.count += 1
        _logger.debug("channel.published", channel=self.name, path=str(self.path))


__all__ = [
    "InboundSource",
    "JsonlFileChannel",
    "JsonlFileSource",
    "MemoryChannel",
    "MemorySource",
    "OutputChannel",
]
