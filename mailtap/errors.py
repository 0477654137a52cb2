"""Exception hierarchy for the mail poller."""

from __future__ import annotations


class MailtapError(Exception):
    """Base class for all mailtap errors."""


class SessionConnectionError(MailtapError):
    """A session could not be established with the IMAP server.

    Fatal for the account that raised it, never for its siblings.
    """


class AuthenticationError(SessionConnectionError):
    """The server rejected the account's credentials."""


class TransientFetchError(MailtapError):
    """A single tick's select or fetch failed; retried on the next tick."""


class MalformedMimeError(MailtapError):
    """A message's MIME structure could not be parsed."""


class ShutdownRequested(MailtapError):
    """Raised by a ticker once the process-wide shutdown event is set."""
