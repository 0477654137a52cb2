"""Abstract contracts the poller depends on.

The poller never talks to ``imaplib`` or to a sink implementation
directly; it only sees these narrow interfaces, which keeps it testable
against in-memory fakes.
"""

from __future__ import annotations

import abc

from .models import ExtractedMail, MailboxSnapshot, RawMessage


class MailSession(abc.ABC):
    """One authenticated conversation with an IMAP server."""

    @abc.abstractmethod
    async def connect(self) -> None:
        """Open the network connection.

        Raises :class:`~mailtap.errors.SessionConnectionError` on failure.
        """
        ...

    @abc.abstractmethod
    async def authenticate(self, email: str, password: str) -> None:
        """Log in.

        Raises :class:`~mailtap.errors.AuthenticationError` when the
        server rejects the credentials.
        """
        ...

    @abc.abstractmethod
    async def select_mailbox(self, name: str) -> MailboxSnapshot:
        """Select *name* and report its current size.

        Raises :class:`~mailtap.errors.TransientFetchError` on failure.
        """
        ...

    @abc.abstractmethod
    async def fetch_range(self, low: int, high: int) -> list[RawMessage]:
        """Fetch full bodies for sequence numbers ``low..high`` inclusive.

        Messages may come back in any order.  Raises
        :class:`~mailtap.errors.TransientFetchError` on failure.
        """
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        """Log out and release the connection.  Never raises."""
        ...


class Sink(abc.ABC):
    """Destination for extracted mail."""

    async def start(self) -> None:
        """Acquire any resources the sink needs.  Default: nothing."""

    async def stop(self) -> None:
        """Release resources acquired by :meth:`start`.  Default: nothing."""

    @abc.abstractmethod
    async def deliver(self, mail: ExtractedMail) -> None:
        """Hand one processed message downstream."""
        ...


class Ticker(abc.ABC):
    """Per-account schedule of poll ticks."""

    @abc.abstractmethod
    async def wait(self) -> None:
        """Block until the next tick is due.

        Raises :class:`~mailtap.errors.ShutdownRequested` once the
        process is shutting down.
        """
        ...
