from typing import Annotated

from mcp.server.fastmcp import FastMCP
from pydantic import Field

from mcp_mailbox_server.config import get_settings
from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox.dispatcher import dispatch_handler
from mcp_mailbox_server.mailbox.models import (
    AccountInfo,
    FolderListResponse,
    MessageListResponse,
    MessageResponse,
    MoveResult,
    SearchResponse,
    UnreadCountResponse,
)
from mcp_mailbox_server.mailbox.search import merge_results

mcp = FastMCP("mailbox")

AccountParam = Annotated[
    str | None,
    Field(default=None, description="The address of the account. Defaults to the first configured account."),
]


@mcp.tool(description="List all configured mail accounts (address and display name, no credentials).")
async def list_accounts() -> list[AccountInfo]:
    settings = get_settings()
    return [
        AccountInfo(address=account.address, display_name=account.display_name)
        for account in (a.masked() for a in settings.get_accounts())
    ]


@mcp.tool(description="List the newest messages of a folder, newest first, including a short body preview.")
async def list_messages(
    account: AccountParam = None,
    folder: Annotated[str | None, Field(default=None, description="The folder to read. Defaults to INBOX.")] = None,
    limit: Annotated[
        int | None,
        Field(default=None, ge=1, description="Maximum number of messages to return. Defaults to 50."),
    ] = None,
) -> MessageListResponse:
    settings = get_settings()
    handler = dispatch_handler(account)
    return await handler.list_messages(folder or settings.default_folder, limit or settings.default_limit)


@mcp.tool(description="Get a single message with its full body by UID. Returns an empty result when the UID is unknown.")
async def get_message(
    uid: Annotated[int, Field(description="The UID of the message (the `id` returned by list_messages).")],
    account: AccountParam = None,
    folder: Annotated[str | None, Field(default=None, description="The folder the message is in.")] = None,
) -> MessageResponse:
    settings = get_settings()
    handler = dispatch_handler(account)
    return await handler.get_message(uid, folder or settings.default_folder)


@mcp.tool(description="List all folders of an account as flat entries with their full paths.")
async def list_folders(account: AccountParam = None) -> FolderListResponse:
    handler = dispatch_handler(account)
    return await handler.list_folders()


@mcp.tool(description="Count the unread messages of a folder.")
async def get_unread_count(
    account: AccountParam = None,
    folder: Annotated[str | None, Field(default=None, description="The folder to count. Defaults to INBOX.")] = None,
) -> UnreadCountResponse:
    settings = get_settings()
    handler = dispatch_handler(account)
    return await handler.get_unread_count(folder or settings.default_folder)


def _check_move_enabled() -> None:
    """Check if moving messages is enabled, raise PermissionError if not."""
    settings = get_settings()
    if not settings.enable_move:
        msg = (
            "Moving messages is disabled. Set 'enable_move=true' in settings "
            "or 'MCP_MAILBOX_SERVER_ENABLE_MOVE=true' environment variable to enable this feature."
        )
        raise PermissionError(msg)


@mcp.tool(
    description="Move a message to another folder. The target folder is created if it does not exist. Requires enable_move=true.",
)
async def move_message(
    uid: Annotated[int, Field(description="The UID of the message to move.")],
    account: AccountParam = None,
    source_folder: Annotated[
        str | None, Field(default=None, description="The folder the message is in. Defaults to INBOX.")
    ] = None,
    target_folder: Annotated[
        str | None,
        Field(default=None, description="The folder to move the message to. Defaults to INBOX.Processed."),
    ] = None,
) -> MoveResult:
    _check_move_enabled()
    settings = get_settings()
    handler = dispatch_handler(account)
    return await handler.move_message(
        uid,
        source_folder or settings.default_folder,
        target_folder or settings.default_move_target,
    )


@mcp.tool(
    description="Find messages from or to an email address across folders. Without an account, all configured accounts are searched.",
)
async def search_by_address(
    address: Annotated[str, Field(description="The email address to search for in From and To.")],
    account: Annotated[
        str | None,
        Field(default=None, description="The address of the account to search. Defaults to all accounts."),
    ] = None,
    folders: Annotated[
        list[str] | None,
        Field(default=None, description="Folders to search in order. Defaults to INBOX, Sent and INBOX.Sent."),
    ] = None,
) -> SearchResponse:
    if not address:
        msg = "address is required"
        raise ValueError(msg)

    settings = get_settings()
    folders = folders or settings.search_folders

    if account is not None:
        handler = dispatch_handler(account)
        result = await handler.search_by_address(address, folders, settings.search_limit_per_folder)
        return SearchResponse(
            emails=result.emails,
            searched_address=address,
            accounts_searched=[account],
            skipped_folders=result.skipped_folders,
            total=len(result.emails),
        )

    per_account = []
    searched = []
    skipped_folders = []
    for configured in settings.get_accounts():
        try:
            handler = dispatch_handler(configured.address)
            result = await handler.search_by_address(address, folders, settings.search_limit_per_folder)
        except Exception as e:
            logger.error(f"Search in account {configured.address} failed, skipping: {e!s}")
            continue
        searched.append(configured.address)
        per_account.append(result.emails)
        skipped_folders.extend(f"{configured.address}:{folder}" for folder in result.skipped_folders)

    emails = merge_results(per_account)
    return SearchResponse(
        emails=emails,
        searched_address=address,
        accounts_searched=searched,
        skipped_folders=skipped_folders,
        total=len(emails),
    )


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
