"""mailtap — incremental IMAP mailbox poller with MIME text extraction."""

from .clock import IntervalTicker
from .config import (
    Account,
    ImapConfig,
    KafkaConfig,
    LoggingConfig,
    MailtapConfig,
    RetryConfig,
    SinkConfig,
    load_config,
)
from .errors import (
    AuthenticationError,
    MailtapError,
    MalformedMimeError,
    SessionConnectionError,
    ShutdownRequested,
    TransientFetchError,
)
from .imap_client import ImapSession
from .interface import MailSession, Sink, Ticker
from .logging import setup_logging
from .mime import extract_message_text, extract_text, parse_media_type, read_message
from .models import (
    ExtractedMail,
    HealthStatus,
    MailboxSnapshot,
    PollerState,
    PollState,
    RawMessage,
    ServiceStatus,
)
from .poller import MailboxPoller, plan_batches
from .retry import with_retry
from .shutdown import install_signal_handlers
from .sinks import KafkaSink, LogSink
from .supervisor import AccountSupervisor, build_sink

__all__ = [
    "Account",
    "AccountSupervisor",
    "AuthenticationError",
    "ExtractedMail",
    "HealthStatus",
    "ImapConfig",
    "ImapSession",
    "IntervalTicker",
    "KafkaConfig",
    "KafkaSink",
    "LogSink",
    "LoggingConfig",
    "MailSession",
    "MailboxPoller",
    "MailboxSnapshot",
    "MailtapConfig",
    "MailtapError",
    "MalformedMimeError",
    "PollState",
    "PollerState",
    "RawMessage",
    "RetryConfig",
    "ServiceStatus",
    "SessionConnectionError",
    "ShutdownRequested",
    "Sink",
    "SinkConfig",
    "Ticker",
    "TransientFetchError",
    "build_sink",
    "extract_message_text",
    "extract_text",
    "install_signal_handlers",
    "parse_media_type",
    "plan_batches",
    "read_message",
    "setup_logging",
    "with_retry",
]
