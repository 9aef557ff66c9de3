class MailboxError(Exception):
    """Base exception for mailbox operations."""


class ConnectError(MailboxError):
    """Raised when the IMAP server cannot be reached or the TLS handshake fails."""


class AuthenticationError(ConnectError):
    """Raised when the server rejects the account credentials."""


class FolderNotFoundError(MailboxError):
    """Raised when a folder cannot be opened."""

    def __init__(self, folder: str, detail: str = ""):
        self.folder = folder
        message = f"Folder '{folder}' could not be opened"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class MoveError(MailboxError):
    """Raised when a required step of a message move fails."""

    def __init__(self, step: str, detail: str):
        self.step = step
        super().__init__(f"Move failed during {step}: {detail}")


class MessageParseError(MailboxError):
    """Raised when a fetched message cannot be decoded."""


class OperationTimeoutError(MailboxError):
    """Raised when an operation does not finish before its deadline."""
