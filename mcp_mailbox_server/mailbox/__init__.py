import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp_mailbox_server.mailbox.models import (
        FolderListResponse,
        MessageListResponse,
        MessageResponse,
        MoveResult,
        SearchResult,
        UnreadCountResponse,
    )


class MailboxHandler(abc.ABC):
    @abc.abstractmethod
    async def list_messages(self, folder: str = "INBOX", limit: int = 50) -> "MessageListResponse":
        """
        List the newest messages of a folder, newest first.

        Args:
            folder: The folder to read (default: "INBOX").
            limit: Maximum number of messages to return, at least 1.

        Returns:
            MessageListResponse with at most ``limit`` messages.
        """

    @abc.abstractmethod
    async def get_message(self, uid: int | str, folder: str = "INBOX") -> "MessageResponse":
        """
        Get a single message by its UID, or an empty response when the UID is unknown
        """

    @abc.abstractmethod
    async def list_folders(self) -> "FolderListResponse":
        """
        List all folders of the account, flattened with their full paths
        """

    @abc.abstractmethod
    async def get_unread_count(self, folder: str = "INBOX") -> "UnreadCountResponse":
        """
        Count messages in a folder without the \\Seen flag
        """

    @abc.abstractmethod
    async def move_message(self, uid: int | str, source_folder: str, target_folder: str) -> "MoveResult":
        """
        Move a message to another folder, creating the folder if needed.

        Args:
            uid: The UID of the message in ``source_folder``.
            source_folder: The folder the message is currently in.
            target_folder: The folder to move the message to.

        Returns:
            MoveResult. Non-fatal problems (target could not be created,
            expunge failed) are listed in ``warnings``.

        Raises:
            MoveError: The message could not be copied or flagged.
        """

    @abc.abstractmethod
    async def search_by_address(
        self, address: str, folders: list[str] | None = None, per_folder_limit: int = 50
    ) -> "SearchResult":
        """
        Search folders for messages from or to an address.

        Args:
            address: The email address to match against From and To.
            folders: Folders to search in order; folders that cannot be
                opened are skipped.
            per_folder_limit: Keep only the newest matches of each folder.

        Returns:
            SearchResult with deduplicated messages, newest first.
        """
