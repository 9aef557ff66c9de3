from mcp_mailbox_server.config import MailAccount
from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox import MailboxHandler
from mcp_mailbox_server.mailbox.fetcher import MessageFetcher, sequence_range
from mcp_mailbox_server.mailbox.folders import FolderTree
from mcp_mailbox_server.mailbox.models import (
    FolderListResponse,
    MessageListResponse,
    MessageResponse,
    MoveResult,
    SearchResult,
    UnreadCountResponse,
)
from mcp_mailbox_server.mailbox.move import MoveCoordinator
from mcp_mailbox_server.mailbox.search import DEFAULT_PER_FOLDER_LIMIT, SearchOrchestrator
from mcp_mailbox_server.mailbox.selector import MailboxSelector
from mcp_mailbox_server.mailbox.session import open_session, with_deadline

DEFAULT_SEARCH_FOLDERS = ["INBOX", "Sent", "INBOX.Sent"]


class ImapMailboxHandler(MailboxHandler):
    """Runs every operation on its own session: connect, operate, log out."""

    def __init__(
        self,
        account: MailAccount,
        operation_timeout: float | None = 120.0,
        search_folders: list[str] | None = None,
    ):
        self.account = account
        self.operation_timeout = operation_timeout
        self.search_folders = search_folders or list(DEFAULT_SEARCH_FOLDERS)

    async def list_messages(self, folder: str = "INBOX", limit: int = 50) -> MessageListResponse:
        if limit < 1:
            msg = "limit must be at least 1"
            raise ValueError(msg)
        return await with_deadline(self._list_messages(folder, limit), self.operation_timeout, "list_messages")

    async def _list_messages(self, folder: str, limit: int) -> MessageListResponse:
        async with open_session(self.account) as session:
            status = await MailboxSelector(session).open(folder, readonly=True)
            if status.exists == 0:
                logger.info(f"Folder {folder} is empty")
                return MessageListResponse(emails=[], account=self.account.address, folder=folder, total=0)

            start, end = sequence_range(status.exists, limit)
            batch = await MessageFetcher(session).fetch_range(start, end)

        emails = sorted(batch.messages, key=lambda m: m.date, reverse=True)[:limit]
        return MessageListResponse(
            emails=emails,
            account=self.account.address,
            folder=folder,
            total=len(emails),
            dropped=batch.dropped,
        )

    async def get_message(self, uid: int | str, folder: str = "INBOX") -> MessageResponse:
        return await with_deadline(self._get_message(int(uid), folder), self.operation_timeout, "get_message")

    async def _get_message(self, uid: int, folder: str) -> MessageResponse:
        async with open_session(self.account) as session:
            await MailboxSelector(session).open(folder, readonly=True)
            batch = await MessageFetcher(session).fetch_uids([uid])

        if not batch.messages:
            logger.info(f"No message with UID {uid} in {folder}")
            return MessageResponse(email=None)
        return MessageResponse(email=batch.messages[0])

    async def list_folders(self) -> FolderListResponse:
        return await with_deadline(self._list_folders(), self.operation_timeout, "list_folders")

    async def _list_folders(self) -> FolderListResponse:
        async with open_session(self.account) as session:
            folders = await FolderTree(session).list_entries()
        return FolderListResponse(folders=folders, total=len(folders))

    async def get_unread_count(self, folder: str = "INBOX") -> UnreadCountResponse:
        return await with_deadline(self._get_unread_count(folder), self.operation_timeout, "get_unread_count")

    async def _get_unread_count(self, folder: str) -> UnreadCountResponse:
        async with open_session(self.account) as session:
            selector = MailboxSelector(session)
            await selector.open(folder, readonly=True)
            unseen = await selector.unseen_count(folder)
        return UnreadCountResponse(unread=unseen or 0, folder=folder)

    async def move_message(self, uid: int | str, source_folder: str, target_folder: str) -> MoveResult:
        return await with_deadline(
            self._move_message(uid, source_folder, target_folder), self.operation_timeout, "move_message"
        )

    async def _move_message(self, uid: int | str, source_folder: str, target_folder: str) -> MoveResult:
        async with open_session(self.account) as session:
            return await MoveCoordinator(session).move(source_folder, uid, target_folder)

    async def search_by_address(
        self,
        address: str,
        folders: list[str] | None = None,
        per_folder_limit: int = DEFAULT_PER_FOLDER_LIMIT,
    ) -> SearchResult:
        if not address:
            msg = "address is required"
            raise ValueError(msg)
        folders = folders or self.search_folders
        return await with_deadline(
            self._search_by_address(address, folders, per_folder_limit), self.operation_timeout, "search_by_address"
        )

    async def _search_by_address(self, address: str, folders: list[str], per_folder_limit: int) -> SearchResult:
        async with open_session(self.account) as session:
            return await SearchOrchestrator(session).search(address, folders, per_folder_limit)
