import asyncio
from collections import namedtuple
from datetime import datetime, timezone
from email.mime.text import MIMEText
from email.utils import format_datetime
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from mcp_mailbox_server.config import MailAccount

# Mirrors aioimaplib.Response
ImapResponse = namedtuple("ImapResponse", "result lines")


def build_raw_email(
    subject: str = "Test Subject",
    sender: str = "Alice <alice@example.com>",
    to: str = "bob@example.com",
    date: datetime | None = None,
    body: str = "Hello there",
) -> bytes:
    msg = MIMEText(body)
    msg["Subject"] = subject
    msg["From"] = sender
    msg["To"] = to
    msg["Date"] = format_datetime(date or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    return msg.as_bytes()


def build_fetch_lines(messages: list[tuple[int, int, bytes, str]]) -> list:
    """Build aioimaplib FETCH response lines from (seq, uid, raw, flags) tuples."""
    lines: list = []
    for seq, uid, raw, flags in messages:
        lines.append(f"{seq} FETCH (UID {uid} FLAGS ({flags}) BODY[] {{{len(raw)}}}".encode())
        lines.append(bytearray(raw))
        lines.append(b")")
    lines.append(b"Fetch completed (0.001 + 0.000 secs).")
    return lines


@pytest.fixture
def account():
    return MailAccount(
        address="test@example.com",
        secret="test_password",
        host="imap.example.com",
        port=993,
    )


@pytest.fixture
def raw_email():
    return build_raw_email


@pytest.fixture
def fetch_lines():
    return build_fetch_lines


@pytest_asyncio.fixture
async def mock_imap():
    """An IMAP4_SSL replacement that has already connected and accepts the login."""
    imap = AsyncMock()
    imap._client_task = asyncio.Future()
    imap._client_task.set_result(None)
    imap.wait_hello_from_server = AsyncMock()
    imap.login = AsyncMock(return_value=ImapResponse("OK", [b"LOGIN completed"]))
    imap.id = AsyncMock(return_value=ImapResponse("OK", [b"ID completed"]))
    imap.logout = AsyncMock(return_value=ImapResponse("OK", [b"LOGOUT completed"]))

    with patch("mcp_mailbox_server.mailbox.session.aioimaplib.IMAP4_SSL", return_value=imap):
        yield imap
