import email.utils
import re
from datetime import datetime, timezone
from email.message import Message
from email.parser import BytesParser
from email.policy import default

from mcp_mailbox_server.log import logger
from mcp_mailbox_server.mailbox.errors import MessageParseError
from mcp_mailbox_server.mailbox.models import AttachmentSummary, EmailAddress, EmailMessage, MessageIdentity

PREVIEW_LENGTH = 200
NO_SUBJECT = "(No subject)"
UNKNOWN_SENDER = "Unknown"
SEEN_FLAG = "\\Seen"

_TAG_RE = re.compile(r"<[^>]+>")


def is_seen(flags: set[str]) -> bool:
    return any(flag.lower() == SEEN_FLAG.lower() for flag in flags)


def parse_date_from_header(date_str: str) -> datetime:
    """Parse a date string from an email header into a datetime object."""
    try:
        date_tuple = email.utils.parsedate_tz(date_str)
        if date_tuple:
            return datetime.fromtimestamp(email.utils.mktime_tz(date_tuple), tz=timezone.utc)
    except Exception as e:
        logger.debug(f"Failed to parse date '{date_str}': {e}")
    return datetime.now(timezone.utc)


def make_preview(text: str) -> str:
    """Collapse whitespace and cut to PREVIEW_LENGTH characters."""
    return " ".join(text.split())[:PREVIEW_LENGTH].strip()


def _decode_part(part: Message) -> str:
    payload = part.get_payload(decode=True)
    if not payload:
        return ""
    charset = part.get_content_charset("utf-8")
    try:
        return payload.decode(charset)
    except (LookupError, UnicodeDecodeError):
        return payload.decode("utf-8", errors="replace")


def _parse_addresses(values: list[str]) -> list[EmailAddress]:
    addresses = []
    for name, address in email.utils.getaddresses([str(v) for v in values]):
        if not name and not address:
            continue
        addresses.append(EmailAddress(name=name or address, address=address))
    return addresses


def _is_attachment(part: Message) -> bool:
    if part.get_content_disposition() == "attachment":
        return True
    return bool(part.get_filename()) and part.get_content_type() not in ("text/plain", "text/html")


def _attachment_summary(part: Message) -> AttachmentSummary:
    payload = part.get_payload(decode=True) or b""
    return AttachmentSummary(
        filename=part.get_filename() or "attachment",
        size=len(payload),
        content_type=part.get_content_type() or "application/octet-stream",
    )


def parse_message(raw_email: bytes, identity: MessageIdentity) -> EmailMessage:
    """Decode raw RFC 822 bytes plus server flags into an EmailMessage.

    Raises:
        MessageParseError: The bytes could not be decoded into a message.
    """
    try:
        email_message = BytesParser(policy=default).parsebytes(raw_email)

        subject = str(email_message.get("Subject", "") or "").strip() or NO_SUBJECT
        senders = _parse_addresses(email_message.get_all("From", []))
        sender = senders[0] if senders else EmailAddress(name=UNKNOWN_SENDER, address="")
        recipients = _parse_addresses(email_message.get_all("To", []))
        date = parse_date_from_header(str(email_message.get("Date", "") or ""))

        body_text = ""
        body_html = ""
        attachments: list[AttachmentSummary] = []

        for part in email_message.walk():
            if part.is_multipart():
                continue
            content_type = part.get_content_type()
            if _is_attachment(part):
                attachments.append(_attachment_summary(part))
            elif content_type == "text/plain" and not body_text:
                body_text = _decode_part(part)
            elif content_type == "text/html" and not body_html:
                body_html = _decode_part(part)
    except Exception as e:
        msg = f"Could not parse message {identity.message_id}: {e!s}"
        raise MessageParseError(msg) from e

    preview_source = body_text or _TAG_RE.sub(" ", body_html)
    return EmailMessage(
        id=identity.message_id,
        uid=identity.uid,
        subject=subject,
        sender=sender,
        to=recipients,
        date=date,
        body_preview=make_preview(preview_source),
        body_text=body_text or None,
        body_html=body_html or None,
        is_read=is_seen(identity.flags),
        has_attachments=bool(attachments),
        attachments=attachments,
    )
