# leadflow/models/domain/mailbox_domain.py
"""
Mailbox Domain Models
Parsed Gmail messages/threads and the shapes the Mailbox Reader returns.
PATTERN: raw API payloads are parsed in constructors, results are plain dataclasses.
"""

import base64
import html
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

from leadflow.utils.email_address import parse_address_list, parse_from_header

_TAG_RE = re.compile(r"<[^>]+>")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def decode_base64url(data: str) -> str:
    """Decode Gmail's URL-safe base64 (padding optional)."""
    try:
        decoded_bytes = base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))
        return decoded_bytes.decode("utf-8", errors="replace")
    except (ValueError, TypeError):
        return ""


def html_to_text(markup: str) -> str:
    text = re.sub(r"(?i)<br\s*/?>|</p>|</div>", "\n", markup)
    text = html.unescape(_TAG_RE.sub("", text))
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


class MailboxMessage:
    """Domain model for a single Gmail message."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.thread_id = data.get("threadId")
        self.label_ids = data.get("labelIds", [])
        self.snippet = html.unescape(data.get("snippet", ""))
        self.history_id = data.get("historyId")
        self.internal_date = data.get("internalDate")
        self.payload = data.get("payload", {}) or {}
        self.raw_data = data

        self._parse_headers()
        self._parse_body()

    def _parse_headers(self):
        headers = self.payload.get("headers", [])
        self.headers = {h["name"].lower(): h["value"] for h in headers if "name" in h}

        self.subject = self.headers.get("subject") or "(No Subject)"
        self.from_name, self.from_email = parse_from_header(self.headers.get("from", ""))
        self.recipients = parse_address_list(self.headers.get("to", ""))
        self.date_header = self.headers.get("date", "")
        self.message_id_header = self.headers.get("message-id", "")

    def _parse_body(self):
        self.body_text = ""
        self.body_html = ""

        if not self.payload:
            return

        if self.payload.get("body", {}).get("data"):
            decoded = decode_base64url(self.payload["body"]["data"])
            if self.payload.get("mimeType") == "text/html":
                self.body_html = decoded
            else:
                self.body_text = decoded
        elif self.payload.get("parts"):
            self._parse_multipart_body(self.payload["parts"])

    def _parse_multipart_body(self, parts: list):
        for part in parts:
            mime_type = part.get("mimeType", "")
            body_data = part.get("body", {}).get("data")

            if mime_type == "text/plain" and body_data and not self.body_text:
                self.body_text = decode_base64url(body_data)
            elif mime_type == "text/html" and body_data and not self.body_html:
                self.body_html = decode_base64url(body_data)
            elif mime_type.startswith("multipart/"):
                self._parse_multipart_body(part.get("parts", []))

    @property
    def decoded_body(self) -> str:
        """Plain text body, falling back to tag-stripped HTML, then the snippet."""
        if self.body_text.strip():
            return self.body_text.strip()
        if self.body_html.strip():
            return html_to_text(self.body_html)
        return self.snippet

    def is_sent(self) -> bool:
        return "SENT" in self.label_ids

    def get_received_datetime(self) -> datetime | None:
        """Received time from internalDate (ms since epoch), else the Date header."""
        if self.internal_date:
            try:
                return datetime.fromtimestamp(int(self.internal_date) / 1000, tz=UTC)
            except (ValueError, OSError):
                pass
        if self.date_header:
            try:
                parsed = parsedate_to_datetime(self.date_header)
                return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
            except (TypeError, ValueError):
                pass
        return None


class MailboxThread:
    """Domain model for a Gmail conversation thread."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.snippet = html.unescape(data.get("snippet", ""))
        self.history_id = data.get("historyId")
        self.messages = [MailboxMessage(msg) for msg in data.get("messages", [])]

    def get_latest_message(self) -> MailboxMessage | None:
        if not self.messages:
            return None
        # Gmail returns thread messages oldest first; ties keep that order
        return max(
            reversed(self.messages),
            key=lambda m: m.get_received_datetime() or datetime.min.replace(tzinfo=UTC),
        )

    def to_email_thread(self) -> "EmailThread | None":
        latest = self.get_latest_message()
        if latest is None:
            return None
        return EmailThread(
            id=self.id,
            subject=latest.subject,
            from_name=latest.from_name,
            email=latest.from_email,
            date=latest.get_received_datetime() or datetime.now(UTC),
            snippet=latest.snippet or self.snippet,
        )


@dataclass(slots=True)
class EmailThread:
    """One logical message per thread as shown in the inbox view."""

    id: str
    subject: str
    from_name: str
    email: str
    date: datetime
    snippet: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subject": self.subject,
            "from": self.from_name,
            "email": self.email,
            "date": self.date.isoformat(),
            "snippet": self.snippet,
        }


@dataclass(slots=True)
class ThreadPage:
    threads: list[EmailThread] = field(default_factory=list)
    next_page_token: str | None = None
    # Threads whose detail fetch failed; they are picked up again on the next refresh
    dropped_thread_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ThreadBody:
    thread_id: str
    decoded_body: str
    snippet: str


@dataclass(slots=True)
class SendAck:
    message_id: str
    thread_id: str | None
    label_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class HistoryPage:
    """Messages added since a history id, plus the pointer to resume from."""

    message_ids: list[str]
    history_id: str | None
    next_page_token: str | None = None
