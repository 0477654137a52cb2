"""MailboxPoller: fetch only the messages above an account's watermark."""

from __future__ import annotations

from collections.abc import Callable, Iterator

import structlog

from .config import Account, ImapConfig
from .errors import (
    AuthenticationError,
    MalformedMimeError,
    SessionConnectionError,
    ShutdownRequested,
    TransientFetchError,
)
from .interface import MailSession, Sink, Ticker
from .mime import extract_message_text
from .models import ExtractedMail, PollerState, PollState, RawMessage

logger = structlog.get_logger()


def plan_batches(low: int, high: int, batch_size: int) -> Iterator[tuple[int, int]]:
    """Split the inclusive range ``low..high`` into chunks of *batch_size*."""
    start = low
    while start <= high:
        end = min(start + batch_size - 1, high)
        yield start, end
        start = end + 1


class MailboxPoller:
    """Polls one account's mailbox on its own ticker.

    Owns the account's session and :class:`PollState`; nothing else reads
    or writes either.  A tick never starts before the previous one has
    delivered everything it fetched, so watermark updates need no locking.

    Only :class:`SessionConnectionError` escapes :meth:`run` as a failure.
    Transient select/fetch errors are logged, the session is dropped, and
    the next tick reconnects.  Malformed messages are skipped and counted.
    """

    def __init__(
        self,
        account: Account,
        config: ImapConfig,
        *,
        session_factory: Callable[[], MailSession],
        sink: Sink,
        ticker: Ticker,
    ) -> None:
        self.account = account
        self._config = config
        self._session_factory = session_factory
        self._sink = sink
        self._ticker = ticker
        self._session: MailSession | None = None
        self._log = logger.bind(account=account.email, mailbox=config.mailbox)

        self.state: PollerState = PollerState.DISCONNECTED
        self.poll_state = PollState()
        if config.start_position == "beginning":
            self.poll_state.initialized = True

        self.ticks_completed: int = 0
        self.messages_delivered: int = 0
        self.messages_malformed: int = 0
        self.ticks_failed: int = 0

    @property
    def last_seen_sequence_number(self) -> int:
        return self.poll_state.last_seen_sequence_number

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Connect, then poll on every tick until shutdown.

        Raises :class:`SessionConnectionError` if the first connection or
        any login fails; the account is then in ``FAILED``.
        """
        self._log.info("poller_starting", watermark=self.last_seen_sequence_number)
        try:
            await self._open_session()
            await self._establish_baseline()
            while True:
                await self._ticker.wait()
                try:
                    await self.tick()
                except TransientFetchError as exc:
                    self.ticks_failed += 1
                    self._log.warning("poll_tick_failed", error=str(exc))
                    await self._drop_session()
        except ShutdownRequested:
            self._log.info("poller_shutdown_requested")
        except SessionConnectionError as exc:
            self.state = PollerState.FAILED
            self._log.error("poller_failed", error=str(exc))
            raise
        finally:
            await self._drop_session()
            if self.state != PollerState.FAILED:
                self.state = PollerState.STOPPED
            self._log.info("poller_stopped", watermark=self.last_seen_sequence_number)

    async def tick(self) -> int:
        """Run one poll cycle and return the number of messages delivered.

        Raises :class:`TransientFetchError` if select or fetch fails.
        """
        session = await self._ensure_session()

        self.state = PollerState.SELECTING
        snapshot = await session.select_mailbox(self._config.mailbox)
        total = snapshot.total_message_count

        if not self.poll_state.initialized:
            self._set_baseline(total)
            self._finish_tick()
            return 0

        last_seen = self.last_seen_sequence_number
        self._log.debug("poll_tick", watermark=last_seen, total=total)
        if total <= last_seen:
            self._finish_tick()
            return 0

        self.state = PollerState.FETCHING
        delivered = 0
        for low, high in plan_batches(last_seen + 1, total, self._config.fetch_batch_size):
            messages = await session.fetch_range(low, high)
            self._log.info("messages_fetched", low=low, high=high, count=len(messages))
            for message in messages:
                delivered += await self._process(message)

        self._finish_tick()
        return delivered

    def _finish_tick(self) -> None:
        self.ticks_completed += 1
        self.state = PollerState.READY

    # ------------------------------------------------------------------
    # Message handling
    # ------------------------------------------------------------------

    async def _process(self, message: RawMessage) -> int:
        """Extract and deliver one message; return 1 if it reached the sink.

        A message that cannot be extracted is counted, logged and stepped
        over, since re-fetching it would fail the same way on every tick.
        Sink failures propagate and leave the watermark below the message.
        """
        seq = message.sequence_number
        try:
            mail = self._extract(message)
        except MalformedMimeError as exc:
            self._skip(seq)
            self._log.warning("mime_malformed", sequence_number=seq, error=str(exc))
            return 0
        except Exception:
            self._skip(seq)
            self._log.exception("message_unprocessable", sequence_number=seq)
            return 0

        await self._sink.deliver(mail)
        self.poll_state.advance(seq)
        self.messages_delivered += 1
        return 1

    def _extract(self, message: RawMessage) -> ExtractedMail:
        text = extract_message_text(
            message,
            max_depth=self._config.max_mime_depth,
            include_single_part=self._config.extract_single_part,
        )
        return ExtractedMail.from_raw(
            message,
            account=self.account.email,
            mailbox=self._config.mailbox,
            text=text,
        )

    def _skip(self, sequence_number: int) -> None:
        self.messages_malformed += 1
        self.poll_state.advance(sequence_number)

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def _open_session(self) -> MailSession:
        session = self._session_factory()
        try:
            await session.connect()
            self.state = PollerState.CONNECTED
            await session.authenticate(
                self.account.email, self.account.password.get_secret_value()
            )
        except BaseException:
            await session.close()
            self.state = PollerState.DISCONNECTED
            raise
        self._session = session
        self.state = PollerState.READY
        self._log.info("session_ready")
        return session

    async def _ensure_session(self) -> MailSession:
        if self._session is not None:
            return self._session
        try:
            return await self._open_session()
        except AuthenticationError:
            raise
        except SessionConnectionError as exc:
            # The account worked before; a failed reconnect is a network blip.
            raise TransientFetchError(f"reconnect failed: {exc}") from exc

    async def _drop_session(self) -> None:
        if self._session is not None:
            session, self._session = self._session, None
            await session.close()
            self.state = PollerState.DISCONNECTED

    async def _establish_baseline(self) -> None:
        if self.poll_state.initialized:
            return
        try:
            await self.tick()
        except TransientFetchError as exc:
            # Left uninitialized; the first successful tick sets the baseline.
            self._log.warning("baseline_failed", error=str(exc))
            await self._drop_session()

    def _set_baseline(self, total: int) -> None:
        self.poll_state.advance(total)
        self.poll_state.initialized = True
        self._log.info("watermark_initialized", watermark=self.last_seen_sequence_number)
