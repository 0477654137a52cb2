"""Data models shared by the poller, the extractor, and the sinks."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from email.message import Message
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

_FOLD = re.compile(r"\r?\n(?=[ \t])")


def header_text(value: str) -> str:
    """Unfold a raw header value and recover any non-ASCII bytes as UTF-8.

    The value is otherwise left as received: no address parsing, no
    RFC 2047 decoding.
    """
    unfolded = _FOLD.sub("", value)
    return unfolded.encode("utf-8", "surrogateescape").decode("utf-8", errors="replace")


def header_values(message: Message, name: str) -> list[str]:
    """Every value of header *name* in *message*, in order, case-insensitively."""
    key = name.lower()
    return [header_text(value) for field, value in message.raw_items() if field.lower() == key]


class ServiceStatus(str, Enum):
    """Runtime status of the supervisor process."""

    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPING = "stopping"
    STOPPED = "stopped"


class PollerState(str, Enum):
    """Protocol state of a single account's poller."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    READY = "ready"
    SELECTING = "selecting"
    FETCHING = "fetching"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class PollState:
    """Watermark of processed sequence numbers for one account."""

    last_seen_sequence_number: int = 0
    initialized: bool = False

    def advance(self, sequence_number: int) -> None:
        # Never decreases, whatever order the fetch stream delivers in.
        self.last_seen_sequence_number = max(self.last_seen_sequence_number, sequence_number)


@dataclass(frozen=True)
class MailboxSnapshot:
    """Result of selecting a mailbox."""

    total_message_count: int


@dataclass
class RawMessage:
    """A fetched message: parsed header block plus the undecoded body."""

    sequence_number: int
    header: Message
    body: bytes

    @property
    def content_type(self) -> str:
        values = header_values(self.header, "Content-Type")
        return values[0] if values else "text/plain"


class ExtractedMail(BaseModel):
    """Header/text pair handed to a sink for each processed message."""

    account: str = Field(description="Email address of the polled account")
    mailbox: str = Field(description="Mailbox the message was fetched from")
    sequence_number: int = Field(description="Sequence number at fetch time")
    header: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Header fields keyed by lower-cased name; all values preserved",
    )
    text: str = Field(default="", description="Concatenated text/* content")
    extracted_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Timestamp when the message was extracted (UTC)",
    )

    @classmethod
    def from_raw(cls, raw: RawMessage, *, account: str, mailbox: str, text: str) -> ExtractedMail:
        header: dict[str, list[str]] = {}
        for name, value in raw.header.raw_items():
            header.setdefault(name.lower(), []).append(header_text(value))
        return cls(
            account=account,
            mailbox=mailbox,
            sequence_number=raw.sequence_number,
            header=header,
            text=text,
        )

    def get(self, name: str, default: str = "") -> str:
        """Return the first value of header *name*, case-insensitively."""
        values = self.header.get(name.lower())
        return values[0] if values else default


class HealthStatus(BaseModel):
    """Response model for the /health probe endpoint."""

    service_name: str = Field(description="Name of the service")
    status: ServiceStatus = Field(description="Current service status")
    uptime_seconds: float = Field(description="Seconds since the service started")
    accounts: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-account poller details keyed by email address",
    )
