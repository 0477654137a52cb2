"""IMAP session over stdlib imaplib, run off the event loop with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import re

import structlog

from .config import ImapConfig
from .errors import AuthenticationError, SessionConnectionError, TransientFetchError
from .interface import MailSession
from .mime import read_message
from .models import MailboxSnapshot, RawMessage

logger = structlog.get_logger()

# Leading sequence number of an untagged FETCH response: b"12 (BODY[] {345}"
_FETCH_SEQ = re.compile(rb"^\s*(\d+)\s+\(")


class ImapSession(MailSession):
    """Async-friendly IMAP session.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop, so one
    slow server never stalls other accounts.  The mailbox is selected
    read-only and bodies are fetched with ``BODY.PEEK[]``, leaving
    ``\\Seen`` flags untouched.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        try:
            self._conn = await asyncio.to_thread(self._open_sync)
        except (OSError, imaplib.IMAP4.error) as exc:
            raise SessionConnectionError(
                f"cannot connect to {self._config.host}:{self._config.port}: {exc}"
            ) from exc
        logger.info("imap_connected", host=self._config.host, port=self._config.port)

    def _open_sync(self) -> imaplib.IMAP4_SSL | imaplib.IMAP4:
        if self._config.use_ssl:
            return imaplib.IMAP4_SSL(
                self._config.host, self._config.port, timeout=self._config.timeout_seconds
            )
        return imaplib.IMAP4(self._config.host, self._config.port, timeout=self._config.timeout_seconds)

    async def authenticate(self, email: str, password: str) -> None:
        conn = self._require_conn()
        try:
            await asyncio.to_thread(conn.login, email, password)
        except imaplib.IMAP4.abort as exc:
            raise SessionConnectionError(f"connection lost during login: {exc}") from exc
        except imaplib.IMAP4.error as exc:
            raise AuthenticationError(f"login rejected for {email}: {exc}") from exc
        except OSError as exc:
            raise SessionConnectionError(f"connection lost during login: {exc}") from exc

    async def close(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(self._close_sync, conn)
            logger.info("imap_disconnected", host=self._config.host)

    @staticmethod
    def _close_sync(conn: imaplib.IMAP4) -> None:
        if conn.state == "SELECTED":
            try:
                conn.close()
            except (imaplib.IMAP4.error, OSError):
                pass
        try:
            conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    # ------------------------------------------------------------------
    # Mailbox access
    # ------------------------------------------------------------------

    async def select_mailbox(self, name: str) -> MailboxSnapshot:
        conn = self._require_conn()
        try:
            status, data = await asyncio.to_thread(conn.select, name, True)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise TransientFetchError(f"SELECT {name} failed: {exc}") from exc
        if status != "OK" or not data or data[0] is None:
            raise TransientFetchError(f"SELECT {name} returned {status}: {data!r}")
        try:
            count = int(data[0])
        except ValueError as exc:
            raise TransientFetchError(f"SELECT {name} returned a bad count: {data[0]!r}") from exc
        return MailboxSnapshot(total_message_count=count)

    async def fetch_range(self, low: int, high: int) -> list[RawMessage]:
        conn = self._require_conn()
        message_set = f"{low}:{high}"
        try:
            status, data = await asyncio.to_thread(conn.fetch, message_set, "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as exc:
            raise TransientFetchError(f"FETCH {message_set} failed: {exc}") from exc
        if status != "OK":
            raise TransientFetchError(f"FETCH {message_set} returned {status}: {data!r}")

        messages = [read_message(seq, raw) for seq, raw in _iter_fetch_items(data)]
        logger.debug("imap_fetch_complete", low=low, high=high, fetched=len(messages))
        return messages

    def _require_conn(self) -> imaplib.IMAP4:
        if self._conn is None:
            raise TransientFetchError("session is not connected")
        return self._conn


def _iter_fetch_items(data: list) -> list[tuple[int, bytes]]:
    """Pick ``(sequence_number, body)`` pairs out of an imaplib FETCH response.

    imaplib returns literal-bearing responses as ``(envelope, literal)``
    tuples interleaved with closing ``b")"`` strings; other items carry
    no body and are skipped.
    """
    items: list[tuple[int, bytes]] = []
    for item in data:
        if not isinstance(item, tuple) or len(item) < 2:
            continue
        match = _FETCH_SEQ.match(item[0])
        if match is None:
            continue
        items.append((int(match.group(1)), item[1]))
    return items
