from datetime import datetime

from pydantic import BaseModel, Field


class MessageIdentity(BaseModel):
    """Server-side identity of a fetched message.

    The sequence number is only meaningful for the folder-open it came from
    and must never be stored; the UID is stable across opens.
    """

    sequence_number: int
    uid: int | None = None
    flags: set[str] = Field(default_factory=set)

    @property
    def message_id(self) -> str:
        return str(self.uid) if self.uid else str(self.sequence_number)


class EmailAddress(BaseModel):
    name: str
    address: str


class AttachmentSummary(BaseModel):
    filename: str
    size: int
    content_type: str


class EmailMessage(BaseModel):
    """Canonical message record"""

    id: str
    uid: int | None = None
    subject: str
    sender: EmailAddress = Field(serialization_alias="from")
    to: list[EmailAddress] = Field(default_factory=list)
    date: datetime
    body_preview: str = ""
    body_text: str | None = None
    body_html: str | None = None
    is_read: bool = False
    has_attachments: bool = False
    attachments: list[AttachmentSummary] = Field(default_factory=list)

    def search_key(self) -> tuple[datetime, str, str]:
        return (self.date, self.subject, self.sender.address.lower())


class FolderNode(BaseModel):
    """A folder in the server hierarchy with its own delimiter"""

    name: str
    path: str
    delimiter: str | None = None
    flags: list[str] = Field(default_factory=list)
    children: list["FolderNode"] = Field(default_factory=list)


class FolderEntry(BaseModel):
    name: str
    path: str


class FolderStatus(BaseModel):
    """Metadata reported when a folder is opened"""

    name: str
    exists: int = 0
    unseen: int | None = None
    uidvalidity: int | None = None
    uidnext: int | None = None
    readonly: bool = True


class FetchBatch(BaseModel):
    """Messages parsed from one fetch, in fetch order"""

    messages: list[EmailMessage] = Field(default_factory=list)
    dropped: int = 0


class MoveResult(BaseModel):
    success: bool
    message: str
    warnings: list[str] = Field(default_factory=list)


class SearchResult(BaseModel):
    emails: list[EmailMessage] = Field(default_factory=list)
    skipped_folders: list[str] = Field(default_factory=list)
    dropped: int = 0


class AccountInfo(BaseModel):
    address: str
    display_name: str


class MessageListResponse(BaseModel):
    """Response for list_messages operation"""

    emails: list[EmailMessage]
    account: str
    folder: str
    total: int
    dropped: int = 0


class MessageResponse(BaseModel):
    email: EmailMessage | None


class FolderListResponse(BaseModel):
    """Response for list_folders operation"""

    folders: list[FolderEntry]
    total: int


class UnreadCountResponse(BaseModel):
    unread: int
    folder: str


class SearchResponse(BaseModel):
    """Response for search_by_address operation"""

    emails: list[EmailMessage]
    searched_address: str
    accounts_searched: list[str]
    skipped_folders: list[str] = Field(default_factory=list)
    total: int
