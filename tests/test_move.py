from unittest.mock import AsyncMock, MagicMock, call

import pytest

from mcp_mailbox_server.mailbox.errors import MoveError
from mcp_mailbox_server.mailbox.move import MoveCoordinator, is_already_exists


@pytest.fixture
def imap():
    imap = AsyncMock()
    imap.create.return_value = ("OK", [b"CREATE completed."])
    imap.select.return_value = ("OK", [b"3 EXISTS", b"[UIDVALIDITY 1] UIDs valid"])
    imap.uid.return_value = ("OK", [b"completed."])
    imap.expunge.return_value = ("OK", [b"EXPUNGE completed."])
    return imap


@pytest.fixture
def coordinator(imap):
    session = MagicMock()
    session.imap = imap
    return MoveCoordinator(session)


class TestMoveCoordinator:
    @pytest.mark.asyncio
    async def test_move_to_new_folder(self, coordinator, imap):
        result = await coordinator.move("INBOX", 42, "INBOX.Processed")

        assert result.success is True
        assert result.warnings == []
        imap.create.assert_awaited_once_with('"INBOX.Processed"')
        imap.select.assert_awaited_once_with('"INBOX"')
        assert imap.uid.await_args_list == [
            call("copy", "42", '"INBOX.Processed"'),
            call("store", "42", "+FLAGS", r"(\Deleted)"),
        ]
        imap.expunge.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_move_to_existing_folder(self, coordinator, imap):
        imap.create.return_value = ("NO", [b"[ALREADYEXISTS] Mailbox already exists"])

        result = await coordinator.move("INBOX", 42, "Archive")

        assert result.success is True
        assert result.warnings == []
        imap.expunge.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_failure_is_a_warning(self, coordinator, imap):
        imap.create.return_value = ("NO", [b"Permission denied"])

        result = await coordinator.move("INBOX", 42, "Archive")

        assert result.success is True
        assert len(result.warnings) == 1
        assert "Permission denied" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_expunge_failure_still_succeeds(self, coordinator, imap):
        imap.expunge.return_value = ("NO", [b"EXPUNGE failed"])

        result = await coordinator.move("INBOX", 42, "Archive")

        assert result.success is True
        assert result.warnings == ["Expunge failed: EXPUNGE failed"]

    @pytest.mark.asyncio
    async def test_expunge_exception_still_succeeds(self, coordinator, imap):
        imap.expunge.side_effect = OSError("connection reset")

        result = await coordinator.move("INBOX", 42, "Archive")

        assert result.success is True
        assert result.warnings == ["Expunge failed: connection reset"]

    @pytest.mark.asyncio
    async def test_copy_failure_is_fatal(self, coordinator, imap):
        imap.uid.return_value = ("NO", [b"COPY failed"])

        with pytest.raises(MoveError) as exc_info:
            await coordinator.move("INBOX", 42, "Archive")

        assert exc_info.value.step == "copy"
        assert imap.uid.await_count == 1
        imap.expunge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_flag_failure_is_fatal(self, coordinator, imap):
        imap.uid.side_effect = [("OK", [b"COPY completed."]), ("NO", [b"STORE failed"])]

        with pytest.raises(MoveError) as exc_info:
            await coordinator.move("INBOX", 42, "Archive")

        assert exc_info.value.step == "flag"
        imap.expunge.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_source_open_failure_is_fatal(self, coordinator, imap):
        imap.select.return_value = ("NO", [b"Mailbox doesn't exist"])

        with pytest.raises(MoveError) as exc_info:
            await coordinator.move("Nope", 42, "Archive")

        assert exc_info.value.step == "select"
        imap.uid.assert_not_awaited()


def test_is_already_exists():
    assert is_already_exists("[ALREADYEXISTS] Mailbox exists")
    assert is_already_exists("Mailbox already exists")
    assert not is_already_exists("Permission denied")
