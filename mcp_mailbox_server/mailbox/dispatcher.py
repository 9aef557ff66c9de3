from mcp_mailbox_server.config import get_settings
from mcp_mailbox_server.mailbox import MailboxHandler
from mcp_mailbox_server.mailbox.imap import ImapMailboxHandler


def dispatch_handler(account_address: str | None = None) -> MailboxHandler:
    settings = get_settings()
    account = settings.get_account(account_address)
    if account is None:
        msg = "Account not found"
        raise ValueError(msg)
    return ImapMailboxHandler(
        account,
        operation_timeout=settings.operation_timeout,
        search_folders=settings.search_folders,
    )
