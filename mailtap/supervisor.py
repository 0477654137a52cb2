"""AccountSupervisor — one poller task per account, isolated from its siblings."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

import structlog
import uvicorn

from .clock import IntervalTicker
from .config import Account, MailtapConfig
from .errors import SessionConnectionError
from .health import create_health_app
from .imap_client import ImapSession
from .interface import MailSession, Sink, Ticker
from .models import PollerState, ServiceStatus
from .poller import MailboxPoller
from .retry import with_retry
from .shutdown import install_signal_handlers
from .sinks import KafkaSink, LogSink

logger = structlog.get_logger()


def _progress(poller: MailboxPoller) -> tuple[int, int]:
    return poller.ticks_completed, poller.messages_delivered


def build_sink(config: MailtapConfig) -> Sink:
    """Create the sink selected by ``config.sink.kind``."""
    if config.sink.kind == "kafka":
        return KafkaSink(config.kafka, config.retry)
    return LogSink()


class AccountSupervisor:
    """Runs a :class:`MailboxPoller` per configured account.

    ``run()`` starts the following concurrently:

    * one poller task per account
    * the FastAPI health server (unless ``health_port`` is 0)

    An account whose credentials are rejected is retired; one whose poller
    crashes unexpectedly is restarted with exponential backoff and keeps
    its watermark.  Neither outcome touches the other accounts.
    """

    def __init__(
        self,
        config: MailtapConfig,
        *,
        sink: Sink | None = None,
        session_factory: Callable[[], MailSession] | None = None,
        ticker_factory: Callable[[Account], Ticker] | None = None,
    ) -> None:
        self.config = config
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()

        self._shutdown_event = asyncio.Event()
        self._sink = sink if sink is not None else build_sink(config)
        self._session_factory = session_factory or (lambda: ImapSession(config.imap))
        self._ticker_factory = ticker_factory or self._default_ticker

        self.pollers: dict[str, MailboxPoller] = {}
        for account in config.credentials:
            if account.email in self.pollers:
                logger.warning("duplicate_account_ignored", account=account.email)
                continue
            self.pollers[account.email] = MailboxPoller(
                account,
                config.imap,
                session_factory=self._session_factory,
                sink=self._sink,
                ticker=self._ticker_factory(account),
            )
        self.retired: set[str] = set()

    def _default_ticker(self, account: Account) -> Ticker:
        return IntervalTicker(self.config.imap.poll_interval_seconds, self._shutdown_event)

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Per-account task
    # ------------------------------------------------------------------

    async def _run_account(self, poller: MailboxPoller) -> None:
        """Run *poller* until shutdown, restarting it on unexpected errors.

        The restart budget counts consecutive crashes only: once a restarted
        poller completes a tick or delivers a message, a later crash starts
        a fresh budget.
        """
        log = logger.bind(account=poller.account.email)

        @with_retry(self.config.retry, fatal_exceptions=(SessionConnectionError,))
        async def _attempt() -> bool:
            # True when the poller stopped normally, False when it crashed
            # after making progress.
            progress = _progress(poller)
            try:
                await poller.run()
            except SessionConnectionError:
                raise
            except Exception:
                log.exception("poller_crashed", watermark=poller.last_seen_sequence_number)
                if _progress(poller) == progress:
                    raise
                return False
            return True

        try:
            while not await _attempt():
                log.info("poller_restarting", watermark=poller.last_seen_sequence_number)
                await asyncio.sleep(self.config.retry.initial_wait_seconds)
        except SessionConnectionError as exc:
            log.error("account_retired", reason="connection", error=str(exc))
            self._retire(poller)
        except Exception as exc:
            log.error("account_retired", reason="restarts_exhausted", error=str(exc))
            self._retire(poller)

    def _retire(self, poller: MailboxPoller) -> None:
        poller.state = PollerState.FAILED
        self.retired.add(poller.account.email)
        self.status = ServiceStatus.DEGRADED

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def _supervise(self, tasks: list[asyncio.Task[None]]) -> None:
        """Wait until every account task ends or shutdown is requested.

        After shutdown, tasks still running once the grace period expires
        are cancelled.
        """
        all_done = asyncio.gather(*tasks, return_exceptions=True)
        shutdown = asyncio.create_task(self._shutdown_event.wait())
        await asyncio.wait({all_done, shutdown}, return_when=asyncio.FIRST_COMPLETED)
        shutdown.cancel()

        if not all_done.done():
            self.status = ServiceStatus.STOPPING
            _, pending = await asyncio.wait(tasks, timeout=self.config.shutdown_grace_seconds)
            for task in pending:
                task.cancel()
            if pending:
                logger.warning("pollers_cancelled", count=len(pending))
        await all_done

    async def run(self, *, install_signals: bool = True) -> None:
        """Start every poller and run until shutdown or until all accounts retire."""
        if install_signals:
            install_signal_handlers(self._shutdown_event)
        self.start_time = time.monotonic()

        logger.info("supervisor_starting", accounts=len(self.pollers))
        await self._sink.start()

        health_task: asyncio.Task[None] | None = None
        if self.config.health_port:
            health_task = asyncio.create_task(self._run_health_server())

        tasks = [
            asyncio.create_task(self._run_account(poller), name=f"poller:{email}")
            for email, poller in self.pollers.items()
        ]
        self.status = ServiceStatus.RUNNING
        try:
            await self._supervise(tasks)
        finally:
            self.status = ServiceStatus.STOPPING
            self._shutdown_event.set()
            if health_task is not None:
                await health_task
            await self._sink.stop()
            self.status = ServiceStatus.STOPPED
            logger.info("supervisor_stopped", retired=sorted(self.retired))
