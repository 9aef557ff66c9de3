import asyncio
from unittest.mock import patch

import aioimaplib
import pytest

from mcp_mailbox_server.config import MailAccount
from mcp_mailbox_server.mailbox.errors import AuthenticationError, ConnectError, OperationTimeoutError
from mcp_mailbox_server.mailbox.session import Session, SessionState, open_session, quote_mailbox, with_deadline


class TestQuoteMailbox:
    def test_plain(self):
        assert quote_mailbox("INBOX") == '"INBOX"'

    def test_spaces(self):
        assert quote_mailbox("Sent Items") == '"Sent Items"'

    def test_escapes_quotes_and_backslashes(self):
        assert quote_mailbox('a"b\\c') == '"a\\"b\\\\c"'


class TestSession:
    @pytest.mark.asyncio
    async def test_open_and_close(self, account, mock_imap):
        async with open_session(account) as session:
            assert session.state is SessionState.READY
            assert session.is_ready
            mock_imap.login.assert_awaited_once_with("test@example.com", "test_password")
            mock_imap.id.assert_awaited_once()

        assert session.state is SessionState.CLOSED
        mock_imap.logout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_authentication_failure(self, account, mock_imap):
        mock_imap.login.return_value = ("NO", [b"[AUTHENTICATIONFAILED] Invalid credentials"])

        session = Session(account)
        with pytest.raises(AuthenticationError):
            async with session:
                pytest.fail("session body must not run")

        assert session.state is SessionState.FAILED
        mock_imap.logout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure(self, account):
        with patch("mcp_mailbox_server.mailbox.session.aioimaplib.IMAP4_SSL", side_effect=OSError("unreachable")):
            session = Session(account)
            with pytest.raises(ConnectError, match="unreachable"):
                await session.open()

        assert session.state is SessionState.FAILED
        await session.close()

    @pytest.mark.asyncio
    async def test_missing_host(self):
        session = Session(MailAccount(address="a@example.com", secret="x"))
        with pytest.raises(ConnectError, match="No IMAP host"):
            await session.open()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, account, mock_imap):
        session = await Session(account).open()
        await session.close()
        await session.close()

        mock_imap.logout.assert_awaited_once()
        assert session.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_logout_error_is_not_raised(self, account, mock_imap):
        mock_imap.logout.side_effect = OSError("connection reset")

        async with open_session(account):
            pass

    @pytest.mark.asyncio
    async def test_body_error_still_closes(self, account, mock_imap):
        with pytest.raises(RuntimeError):
            async with open_session(account):
                raise RuntimeError("protocol error")

        mock_imap.logout.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_id_failure_is_tolerated(self, account, mock_imap):
        mock_imap.id.side_effect = Exception("BAD Parse command error")

        async with open_session(account) as session:
            assert session.is_ready

    def test_plain_imap_class(self):
        session = Session(MailAccount(address="a@example.com", secret="x", host="localhost", port=143, use_ssl=False))
        assert session.imap_class is aioimaplib.IMAP4


class TestWithDeadline:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work():
            return 42

        assert await with_deadline(work(), 1, "work") == 42

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(OperationTimeoutError, match="slow work timed out"):
            await with_deadline(asyncio.sleep(5), 0.01, "slow work")
