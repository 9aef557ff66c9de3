"""Fetch messages and turn the FETCH response into parsed EmailMessages.

A FETCH response interleaves data for many messages: the ``N FETCH (`` line
that names a message, its UID/FLAGS attributes (before or after the body,
depending on the server), the body literal, and finally the end of the
response. :func:`iter_fetch_events` replays the response as that event
stream. Every message event spawns one pending parse, and a
:class:`ParseBarrier` keeps the batch open until the stream has ended *and*
every spawned parse has settled.
"""

import asyncio
import re
from collections.abc import Coroutine, Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox.errors import MailboxError
from mcp_mailbox_server.mailbox.models import EmailMessage, FetchBatch, MessageIdentity
from mcp_mailbox_server.mailbox.parser import parse_message
from mcp_mailbox_server.mailbox.selector import describe_response
from mcp_mailbox_server.mailbox.session import Session

FETCH_ITEMS = "(UID FLAGS BODY.PEEK[])"

_FETCH_START_RE = re.compile(rb"^\*?\s*(\d+)\s+FETCH\s*\(", re.IGNORECASE)
_UID_RE = re.compile(rb"UID\s+(\d+)", re.IGNORECASE)
_FLAGS_RE = re.compile(rb"FLAGS\s*\(([^)]*)\)", re.IGNORECASE)


@dataclass
class FetchEvent:
    kind: str  # "message" | "attributes" | "body" | "end"
    sequence_number: int | None = None
    uid: int | None = None
    flags: set[str] | None = None
    data: bytes | None = None


def iter_fetch_events(lines: Iterable[Any]) -> Iterator[FetchEvent]:
    """Replay aioimaplib FETCH response lines as an ordered event stream.

    Literals (message bodies) arrive as ``bytearray`` items, everything else
    as ``bytes``. Some servers put UID/FLAGS on the FETCH line, others
    (e.g. Proton Bridge) send them after the literal as ``b' UID 12)'``.
    """
    for item in lines:
        if isinstance(item, bytearray):
            yield FetchEvent("body", data=bytes(item))
            continue

        raw = item if isinstance(item, bytes) else str(item).encode("utf-8", errors="replace")
        start = _FETCH_START_RE.match(raw)
        if start:
            yield FetchEvent("message", sequence_number=int(start.group(1)))

        uid_match = _UID_RE.search(raw)
        flags_match = _FLAGS_RE.search(raw)
        if uid_match or flags_match:
            yield FetchEvent(
                "attributes",
                uid=int(uid_match.group(1)) if uid_match else None,
                flags=set(flags_match.group(1).decode("utf-8", errors="replace").split()) if flags_match else None,
            )

    yield FetchEvent("end")


class ParseBarrier:
    """Counts the outstanding parses of one fetch.

    Released once :meth:`end_stream` has been called and the counter is back
    at zero, however the parses interleave.
    """

    def __init__(self) -> None:
        self._outstanding = 0
        self._stream_ended = False
        self._released = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def outstanding(self) -> int:
        return self._outstanding

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        self._outstanding += 1
        task = asyncio.ensure_future(coro)
        task.add_done_callback(self._settled)
        self._tasks.append(task)
        return task

    def end_stream(self) -> None:
        self._stream_ended = True
        self._maybe_release()

    async def wait(self) -> None:
        await self._released.wait()

    def cancel(self) -> None:
        for task in self._tasks:
            task.cancel()

    def _settled(self, _task: asyncio.Task) -> None:
        self._outstanding -= 1
        self._maybe_release()

    def _maybe_release(self) -> None:
        if self._stream_ended and self._outstanding == 0:
            self._released.set()


@dataclass
class _PendingMessage:
    identity: MessageIdentity
    chunks: list[bytes] = field(default_factory=list)
    complete: asyncio.Event = field(default_factory=asyncio.Event)


class MessageFetcher:
    def __init__(self, session: Session):
        self.session = session

    async def fetch_range(self, start: int, end: int) -> FetchBatch:
        """Fetch messages by sequence number range ``start:end`` (inclusive)."""
        message_set = f"{start}:{end}"
        logger.debug(f"Fetching sequence range {message_set}")
        result, lines = await self.session.imap.fetch(message_set, FETCH_ITEMS)
        if result != "OK":
            msg = f"FETCH {message_set} failed: {describe_response(lines)}"
            raise MailboxError(msg)
        return await self.collect(lines)

    async def fetch_uids(self, uids: list[int]) -> FetchBatch:
        """Fetch messages by UID. UIDs the server does not know are simply absent."""
        if not uids:
            return FetchBatch()

        uid_set = ",".join(str(uid) for uid in uids)
        logger.debug(f"Fetching UIDs {uid_set}")
        result, lines = await self.session.imap.uid("fetch", uid_set, FETCH_ITEMS)
        if result != "OK":
            msg = f"UID FETCH {uid_set} failed: {describe_response(lines)}"
            raise MailboxError(msg)

        batch = await self.collect(lines)
        # Drop unsolicited FETCH data for messages that were not requested
        wanted = {int(uid) for uid in uids}
        batch.messages = [m for m in batch.messages if m.uid is None or m.uid in wanted]
        return batch

    async def collect(self, lines: Iterable[Any]) -> FetchBatch:
        """Run the event stream of one FETCH response through the parse barrier."""
        barrier = ParseBarrier()
        tasks: list[asyncio.Task] = []
        current: _PendingMessage | None = None

        try:
            for event in iter_fetch_events(lines):
                if event.kind == "message":
                    if current is not None:
                        current.complete.set()
                    current = _PendingMessage(MessageIdentity(sequence_number=event.sequence_number))
                    tasks.append(barrier.spawn(self._parse_when_complete(current)))
                elif event.kind == "attributes" and current is not None:
                    if event.uid is not None:
                        current.identity.uid = event.uid
                    if event.flags is not None:
                        current.identity.flags = event.flags
                elif event.kind == "body":
                    if current is None:
                        logger.debug("Ignoring literal outside of a FETCH item")
                        continue
                    current.chunks.append(event.data)
                elif event.kind == "end":
                    if current is not None:
                        current.complete.set()
                    barrier.end_stream()

            await barrier.wait()
        except asyncio.CancelledError:
            barrier.cancel()
            raise

        messages: list[EmailMessage] = []
        dropped = 0
        for task in tasks:
            error = task.exception()
            if error is not None:
                dropped += 1
                logger.error(f"Dropping message from batch: {error!s}")
                continue
            message = task.result()
            if message is not None:
                messages.append(message)

        if dropped:
            logger.warning(f"{dropped} message(s) could not be parsed and were dropped")
        return FetchBatch(messages=messages, dropped=dropped)

    async def _parse_when_complete(self, pending: _PendingMessage) -> EmailMessage | None:
        await pending.complete.wait()
        if not pending.chunks:
            # FETCH data without a body, e.g. an unsolicited flag update
            logger.debug(f"No body received for sequence number {pending.identity.sequence_number}")
            return None
        raw_email = b"".join(pending.chunks)
        return await asyncio.to_thread(parse_message, raw_email, pending.identity)


def sequence_range(total: int, limit: int) -> tuple[int, int]:
    """Sequence numbers ``(start, end)`` covering the newest ``limit`` of ``total`` messages."""
    if limit < 1:
        msg = "limit must be at least 1"
        raise ValueError(msg)
    return max(1, total - limit + 1), total
