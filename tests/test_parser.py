from datetime import datetime, timezone
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from mcp_mailbox_server.mailbox.errors import MessageParseError
from mcp_mailbox_server.mailbox.models import MessageIdentity
from mcp_mailbox_server.mailbox.parser import (
    NO_SUBJECT,
    is_seen,
    make_preview,
    parse_date_from_header,
    parse_message,
)


class TestParseMessage:
    def test_plain_text(self, raw_email):
        raw = raw_email(subject="Quarterly report", body="Numbers   are\n\n up")
        message = parse_message(raw, MessageIdentity(sequence_number=3, uid=42, flags={"\\Seen"}))

        assert message.id == "42"
        assert message.uid == 42
        assert message.subject == "Quarterly report"
        assert message.sender.name == "Alice"
        assert message.sender.address == "alice@example.com"
        assert [r.address for r in message.to] == ["bob@example.com"]
        assert message.date == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        assert message.body_preview == "Numbers are up"
        assert message.body_text == "Numbers   are\n\n up"
        assert message.body_html is None
        assert message.is_read is True
        assert message.has_attachments is False

    def test_id_falls_back_to_sequence_number(self, raw_email):
        message = parse_message(raw_email(), MessageIdentity(sequence_number=7))
        assert message.id == "7"
        assert message.uid is None
        assert message.is_read is False

    def test_missing_subject_and_sender(self):
        raw = b"To: bob@example.com\r\n\r\nbody\r\n"
        message = parse_message(raw, MessageIdentity(sequence_number=1, uid=1))

        assert message.subject == NO_SUBJECT
        assert message.sender.name == "Unknown"
        assert message.sender.address == ""

    def test_sender_name_falls_back_to_address(self, raw_email):
        message = parse_message(raw_email(sender="carol@example.com"), MessageIdentity(sequence_number=1, uid=1))
        assert message.sender.name == "carol@example.com"

    def test_html_only_preview_strips_tags(self):
        msg = MIMEText("<p>Hello <b>world</b></p>", "html")
        msg["Subject"] = "HTML"
        msg["From"] = "alice@example.com"
        message = parse_message(msg.as_bytes(), MessageIdentity(sequence_number=1, uid=5))

        assert message.body_html == "<p>Hello <b>world</b></p>"
        assert message.body_text is None
        assert message.body_preview == "Hello world"

    def test_attachments(self):
        msg = MIMEMultipart()
        msg["Subject"] = "With attachment"
        msg["From"] = "alice@example.com"
        msg.attach(MIMEText("See attached"))
        attachment = MIMEApplication(b"%PDF-1.4 fake", _subtype="pdf")
        attachment.add_header("Content-Disposition", "attachment", filename="report.pdf")
        msg.attach(attachment)

        message = parse_message(msg.as_bytes(), MessageIdentity(sequence_number=1, uid=9))

        assert message.body_text == "See attached"
        assert message.has_attachments is True
        assert len(message.attachments) == 1
        assert message.attachments[0].filename == "report.pdf"
        assert message.attachments[0].content_type == "application/pdf"
        assert message.attachments[0].size == len(b"%PDF-1.4 fake")

    def test_unparseable_message_raises(self, monkeypatch):
        def explode(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr("mcp_mailbox_server.mailbox.parser.BytesParser.parsebytes", explode)
        with pytest.raises(MessageParseError, match="Could not parse message 11"):
            parse_message(b"whatever", MessageIdentity(sequence_number=1, uid=11))


class TestHelpers:
    def test_preview_is_capped(self):
        preview = make_preview("word " * 100)
        assert len(preview) <= 200
        assert "  " not in preview

    def test_is_seen_is_case_insensitive(self):
        assert is_seen({"\\SEEN"})
        assert not is_seen({"\\Flagged"})
        assert not is_seen(set())

    def test_parse_date_invalid_falls_back_to_now(self):
        before = datetime.now(timezone.utc)
        parsed = parse_date_from_header("not a date")
        assert parsed >= before
