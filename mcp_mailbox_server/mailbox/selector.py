import re

from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox.errors import FolderNotFoundError
from mcp_mailbox_server.mailbox.models import FolderStatus
from mcp_mailbox_server.mailbox.session import Session, quote_mailbox

_EXISTS_RE = re.compile(r"^(\d+)\s+EXISTS", re.IGNORECASE)
_UIDVALIDITY_RE = re.compile(r"UIDVALIDITY\s+(\d+)", re.IGNORECASE)
_UIDNEXT_RE = re.compile(r"UIDNEXT\s+(\d+)", re.IGNORECASE)


def _decode(line: bytes | bytearray | str) -> str:
    if isinstance(line, bytes | bytearray):
        return bytes(line).decode("utf-8", errors="replace")
    return str(line)


def describe_response(lines: list) -> str:
    """Join response lines into a short human-readable message."""
    text = " ".join(_decode(line).strip() for line in lines or [] if not isinstance(line, bytearray))
    return text or "no response text"


def parse_select_response(lines: list) -> dict[str, int]:
    """Parse SELECT/EXAMINE response lines into EXISTS/UIDVALIDITY/UIDNEXT.

    The ``[UNSEEN n]`` response code of SELECT names the first unseen
    sequence number, not a count, and is ignored.
    """
    status: dict[str, int] = {}
    for line in lines or []:
        text = _decode(line)

        match = _EXISTS_RE.search(text)
        if match:
            status["exists"] = int(match.group(1))

        match = _UIDVALIDITY_RE.search(text)
        if match:
            status["uidvalidity"] = int(match.group(1))

        match = _UIDNEXT_RE.search(text)
        if match:
            status["uidnext"] = int(match.group(1))
    return status


def parse_search_uids(lines: list) -> list[int]:
    """Collect the UIDs of a SEARCH response, skipping the completion line."""
    uids: list[int] = []
    for line in lines or []:
        if isinstance(line, bytearray):
            continue
        uids.extend(int(token) for token in _decode(line).split() if token.isdigit())
    return uids


class MailboxSelector:
    """Opens folders on a session and reports their metadata."""

    def __init__(self, session: Session):
        self.session = session

    async def open(self, folder: str, readonly: bool = True) -> FolderStatus:
        """Open ``folder`` with EXAMINE (read-only) or SELECT (read-write).

        Raises:
            FolderNotFoundError: The server refused to open the folder.
        """
        imap = self.session.imap
        command = imap.examine if readonly else imap.select
        result, lines = await command(quote_mailbox(folder))
        if result != "OK":
            raise FolderNotFoundError(folder, describe_response(lines))

        status = parse_select_response(lines)
        logger.debug(f"Opened folder {folder} (readonly={readonly}): {status}")
        return FolderStatus(name=folder, readonly=readonly, **status)

    async def unseen_count(self, folder: str) -> int | None:
        """Count messages without the \\Seen flag in the currently open folder."""
        result, lines = await self.session.imap.uid_search("UNSEEN")
        if result != "OK":
            logger.warning(f"UNSEEN search failed for {folder}: {describe_response(lines)}")
            return None
        return len(parse_search_uids(lines))
