from datetime import datetime

from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox.errors import FolderNotFoundError, MailboxError
from mcp_mailbox_server.mailbox.fetcher import MessageFetcher
from mcp_mailbox_server.mailbox.models import EmailMessage, SearchResult
from mcp_mailbox_server.mailbox.selector import MailboxSelector, describe_response, parse_search_uids
from mcp_mailbox_server.mailbox.session import Session

DEFAULT_PER_FOLDER_LIMIT = 50


class SearchAccumulator:
    """Collects search hits across folders without duplicates.

    Two messages are the same hit when they share date, subject and sender
    address, which is how a message filed in both INBOX and Sent shows up.
    """

    def __init__(self) -> None:
        self._messages: list[EmailMessage] = []
        self._seen: set[tuple[datetime, str, str]] = set()

    def __len__(self) -> int:
        return len(self._messages)

    def add(self, message: EmailMessage) -> bool:
        key = message.search_key()
        if key in self._seen:
            return False
        self._seen.add(key)
        self._messages.append(message)
        return True

    def extend(self, messages: list[EmailMessage]) -> int:
        return sum(1 for message in messages if self.add(message))

    def finalize(self) -> list[EmailMessage]:
        """Messages sorted newest first; equal dates keep insertion order."""
        return sorted(self._messages, key=lambda m: m.date, reverse=True)


def merge_results(results: list[list[EmailMessage]]) -> list[EmailMessage]:
    """Merge per-account search results into one deduplicated, date-sorted list."""
    accumulator = SearchAccumulator()
    for messages in results:
        accumulator.extend(messages)
    return accumulator.finalize()


class SearchOrchestrator:
    """Searches folders one after another for messages from or to an address."""

    def __init__(self, session: Session):
        self.session = session
        self.selector = MailboxSelector(session)
        self.fetcher = MessageFetcher(session)

    async def search(
        self,
        address: str,
        folders: list[str],
        per_folder_limit: int = DEFAULT_PER_FOLDER_LIMIT,
    ) -> SearchResult:
        """Search each folder in order and return deduplicated hits, newest first.

        A folder that cannot be opened or searched is skipped and reported in
        ``skipped_folders``; the remaining folders are still searched.
        """
        if per_folder_limit < 1:
            msg = "per_folder_limit must be at least 1"
            raise ValueError(msg)

        accumulator = SearchAccumulator()
        skipped: list[str] = []
        dropped = 0

        for folder in folders:
            try:
                await self.selector.open(folder, readonly=True)
            except FolderNotFoundError as e:
                logger.warning(f"Skipping folder {folder}: {e!s}")
                skipped.append(folder)
                continue

            try:
                uids = await self._search_folder(address)
                if not uids:
                    logger.debug(f"No matches for {address} in {folder}")
                    continue
                batch = await self.fetcher.fetch_uids(uids[-per_folder_limit:])
            except MailboxError as e:
                logger.warning(f"Search in {folder} failed, skipping: {e!s}")
                skipped.append(folder)
                continue

            dropped += batch.dropped
            added = accumulator.extend(batch.messages)
            logger.info(f"Found {len(batch.messages)} matches in {folder} ({added} new)")

        return SearchResult(emails=accumulator.finalize(), skipped_folders=skipped, dropped=dropped)

    async def _search_folder(self, address: str) -> list[int]:
        quoted = f'"{address}"'
        result, lines = await self.session.imap.uid_search("OR", "FROM", quoted, "TO", quoted)
        if result != "OK":
            msg = f"SEARCH failed: {describe_response(lines)}"
            raise MailboxError(msg)
        return parse_search_uids(lines)
