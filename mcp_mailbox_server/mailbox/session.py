"""One exclusive IMAP connection per mailbox operation.

A Session is opened at the start of an operation and closed when it ends,
whatever way it ends. Sessions are never pooled or shared; call sites obtain
them through :func:`open_session` so a pooled implementation can be swapped
in later without touching the operations themselves.
"""

import asyncio
from collections.abc import Awaitable
from enum import Enum
from typing import TypeVar

import aioimaplib

from mcp_mailbox_server import __version__
from mcp_mailbox_server.config import MailAccount
from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox.errors import AuthenticationError, ConnectError, OperationTimeoutError

CLIENT_NAME = "mcp-mailbox-server"

T = TypeVar("T")


def quote_mailbox(mailbox: str) -> str:
    """Quote mailbox name for IMAP compatibility.

    Per RFC 3501 Section 9 (Formal Syntax), quoted strings must escape
    backslashes and double-quote characters with a preceding backslash.
    """
    escaped = mailbox.replace("\\", "\\\\").replace('"', r"\"")
    return f'"{escaped}"'


async def _send_imap_id(imap: aioimaplib.IMAP4 | aioimaplib.IMAP4_SSL) -> None:
    """Send IMAP ID command with fallback for strict servers.

    aioimaplib's id() sends 'ID ( "name" "value" )', which some servers
    reject with 'BAD Parse command error'. Those get the raw command instead.
    """
    try:
        response = await imap.id(name=CLIENT_NAME, version=__version__)
        if response.result != "OK":
            await imap.protocol.execute(
                aioimaplib.Command(
                    "ID",
                    imap.protocol.new_tag(),
                    f'("name" "{CLIENT_NAME}" "version" "{__version__}")',
                )
            )
    except Exception as e:
        logger.warning(f"IMAP ID command failed: {e!s}")


class SessionState(str, Enum):
    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


class Session:
    def __init__(self, account: MailAccount):
        self.account = account
        self.state = SessionState.CONNECTING
        self.imap_class = aioimaplib.IMAP4_SSL if account.use_ssl else aioimaplib.IMAP4
        self.imap: aioimaplib.IMAP4 | aioimaplib.IMAP4_SSL | None = None
        self._closed = False

    @property
    def is_ready(self) -> bool:
        return self.state is SessionState.READY and self.imap is not None

    async def open(self) -> "Session":
        """Connect, wait for the greeting and log in.

        Raises:
            ConnectError: The server is unreachable, the TLS handshake failed
                or the greeting did not arrive in time.
            AuthenticationError: The server rejected the credentials.
        """
        account = self.account
        if not account.host:
            self.state = SessionState.FAILED
            msg = f"No IMAP host configured for {account.address}"
            raise ConnectError(msg)

        logger.debug(f"Connecting to {account.host}:{account.port} as {account.address}")
        try:
            self.imap = self.imap_class(account.host, account.port, timeout=account.timeout)
            # Wait for the connection to be established
            await self.imap._client_task
            await self.imap.wait_hello_from_server()
        except (OSError, asyncio.TimeoutError) as e:
            self.state = SessionState.FAILED
            msg = f"Failed to connect to {account.host}:{account.port}: {e!s}"
            raise ConnectError(msg) from e

        result, _ = await self.imap.login(account.address, account.secret)
        if result != "OK":
            self.state = SessionState.FAILED
            msg = f"Authentication failed for {account.address}"
            raise AuthenticationError(msg)

        await _send_imap_id(self.imap)
        self.state = SessionState.READY
        logger.debug(f"Session ready for {account.address}")
        return self

    async def close(self) -> None:
        """Log out and release the connection. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        imap, self.imap = self.imap, None
        if imap is not None:
            try:
                await imap.logout()
            except Exception as e:
                logger.info(f"Error during logout: {e}")

        if self.state is not SessionState.FAILED:
            self.state = SessionState.CLOSED

    async def __aenter__(self) -> "Session":
        try:
            return await self.open()
        except BaseException:
            await self.close()
            raise

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc is not None and not isinstance(exc, asyncio.CancelledError):
            logger.debug(f"Closing session for {self.account.address} after error: {exc!s}")
        await self.close()


def open_session(account: MailAccount) -> Session:
    return Session(account)


async def with_deadline(operation: Awaitable[T], timeout: float | None, description: str) -> T:
    """Await an operation, cancelling it once the deadline passes.

    Cancellation unwinds the operation's ``async with`` session block, so the
    connection is closed before OperationTimeoutError reaches the caller.
    """
    try:
        return await asyncio.wait_for(operation, timeout)
    except asyncio.TimeoutError as e:
        msg = f"{description} timed out after {timeout}s"
        raise OperationTimeoutError(msg) from e
