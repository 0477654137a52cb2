"""Shared test fixtures for the mailtap test suite."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from email import encoders
from email.mime.base import MIMEBase
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from mailtap.config import Account, ImapConfig, MailtapConfig, RetryConfig
from mailtap.errors import (
    AuthenticationError,
    SessionConnectionError,
    ShutdownRequested,
    TransientFetchError,
)
from mailtap.interface import MailSession, Sink, Ticker
from mailtap.mime import read_message
from mailtap.models import ExtractedMail, MailboxSnapshot, RawMessage


# ------------------------------------------------------------------
# Config fixtures
# ------------------------------------------------------------------


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        mailbox="INBOX",
        poll_interval_seconds=1.0,
    )


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.1,
        multiplier=2.0,
    )


@pytest.fixture
def account() -> Account:
    return Account(email="alice@example.com", password="alicepass")


@pytest.fixture
def mailtap_config(imap_config: ImapConfig, retry_config: RetryConfig) -> MailtapConfig:
    return MailtapConfig(
        name="mailtap-test",
        imap=imap_config,
        credentials=[
            Account(email="alice@example.com", password="alicepass"),
            Account(email="bob@example.com", password="bobpass"),
        ],
        retry=retry_config,
        health_port=0,
        shutdown_grace_seconds=0.5,
    )


# ------------------------------------------------------------------
# Sample message builders
# ------------------------------------------------------------------


def build_email(
    text: str = "hello",
    *,
    subject: str = "Test Subject",
    from_addr: str = "sender@example.com",
    to_addr: str = "recipient@example.com",
) -> bytes:
    """Build a small multipart/alternative email with one text/plain part."""
    return (
        "Date: Mon, 01 Jun 2025 12:00:00 +0000\r\n"
        f"From: {from_addr}\r\n"
        f"To: {to_addr}\r\n"
        f"Subject: {subject}\r\n"
        'Content-Type: multipart/alternative; boundary="alt"\r\n'
        "\r\n"
        "--alt\r\n"
        "Content-Type: text/plain\r\n"
        "\r\n"
        f"{text}\r\n"
        "--alt--\r\n"
    ).encode()


MALFORMED_EMAIL = (
    b"Subject: broken\r\n"
    b"Content-Type: multipart/mixed\r\n"
    b"\r\n"
    b"there is no boundary parameter\r\n"
)


def build_nested_email(text: str = "X", html: str = "Y") -> bytes:
    """multipart/mixed holding a multipart/alternative and a PNG attachment."""
    msg = MIMEMultipart("mixed")
    msg["Subject"] = "Nested"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"

    alt = MIMEMultipart("alternative")
    alt.attach(MIMEText(text, "plain"))
    alt.attach(MIMEText(html, "html"))
    msg.attach(alt)

    image = MIMEBase("image", "png")
    image.set_payload(b"\x89PNG\r\n\x1a\nfake image data")
    encoders.encode_base64(image)
    image.add_header("Content-Disposition", "attachment", filename="logo.png")
    msg.attach(image)
    return msg.as_bytes()


def build_deeply_nested_email(levels: int, core: str = "core") -> bytes:
    """Wrap a text/plain part in *levels* nested multipart/mixed containers."""
    inner = f"Content-Type: text/plain\r\n\r\n{core}".encode()
    for level in range(levels):
        boundary = f"level{level}"
        inner = (
            f'Content-Type: multipart/mixed; boundary="{boundary}"\r\n\r\n'
            f"--{boundary}\r\n"
        ).encode() + inner + f"\r\n--{boundary}--\r\n".encode()
    return b"Subject: deep\r\n" + inner


# ------------------------------------------------------------------
# In-memory IMAP server, sink, and ticker
# ------------------------------------------------------------------


class FakeImapServer:
    """Mailbox state plus failure knobs shared by every FakeSession it hands out."""

    def __init__(self, messages: list[bytes] | None = None) -> None:
        self.messages: list[bytes] = list(messages or [])
        self.rejected_emails: set[str] = set()
        self.connect_failures: int = 0
        self.select_failures: int = 0
        self.fetch_failures: int = 0
        self.reverse_fetch: bool = False
        self.select_calls: int = 0
        self.fetch_calls: list[tuple[int, int]] = []
        self.sessions: list[FakeSession] = []

    def session_factory(self) -> FakeSession:
        session = FakeSession(self)
        self.sessions.append(session)
        return session


class FakeSession(MailSession):
    def __init__(self, server: FakeImapServer) -> None:
        self._server = server
        self.connected = False
        self.closed = False
        self.logged_in_as: str | None = None

    async def connect(self) -> None:
        if self._server.connect_failures:
            self._server.connect_failures -= 1
            raise SessionConnectionError("connection refused")
        self.connected = True

    async def authenticate(self, email: str, password: str) -> None:
        if email in self._server.rejected_emails:
            raise AuthenticationError(f"login rejected for {email}")
        self.logged_in_as = email

    async def select_mailbox(self, name: str) -> MailboxSnapshot:
        self._server.select_calls += 1
        if self._server.select_failures:
            self._server.select_failures -= 1
            raise TransientFetchError("SELECT timed out")
        return MailboxSnapshot(total_message_count=len(self._server.messages))

    async def fetch_range(self, low: int, high: int) -> list[RawMessage]:
        self._server.fetch_calls.append((low, high))
        if self._server.fetch_failures:
            self._server.fetch_failures -= 1
            raise TransientFetchError("FETCH failed")
        top = min(high, len(self._server.messages))
        messages = [read_message(seq, self._server.messages[seq - 1]) for seq in range(low, top + 1)]
        if self._server.reverse_fetch:
            messages.reverse()
        return messages

    async def close(self) -> None:
        self.closed = True


class RecordingSink(Sink):
    """Collects delivered mail; optionally fails the first *fail_times* deliveries."""

    def __init__(self, fail_times: int = 0) -> None:
        self.delivered: list[ExtractedMail] = []
        self.fail_times = fail_times
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def deliver(self, mail: ExtractedMail) -> None:
        if self.fail_times:
            self.fail_times -= 1
            raise RuntimeError("sink unavailable")
        self.delivered.append(mail)


class ScriptedTicker(Ticker):
    """Fires *ticks* times immediately, then requests shutdown.

    *before_tick* runs with the 1-based tick number just before each tick
    is released, which lets tests change the mailbox between ticks.
    """

    def __init__(self, ticks: int, before_tick: Callable[[int], None] | None = None) -> None:
        self.ticks = ticks
        self.count = 0
        self._before_tick = before_tick

    async def wait(self) -> None:
        # Yield like a real timer so sibling pollers interleave.
        await asyncio.sleep(0)
        if self.count >= self.ticks:
            raise ShutdownRequested()
        self.count += 1
        if self._before_tick is not None:
            self._before_tick(self.count)


@pytest.fixture
def server() -> FakeImapServer:
    return FakeImapServer()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
