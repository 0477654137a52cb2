"""Configuration loaded from environment variables and an optional YAML file.

Uses pydantic-settings so every field can be overridden via env vars.
A YAML file with the same layout (``imap``, ``credentials``, ...) takes
precedence over the environment when one is given to :func:`load_config`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings


class ImapConfig(BaseSettings):
    """IMAP server and polling settings shared by every account."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to poll")
    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0,
        description="Seconds between IMAP poll ticks",
    )
    fetch_batch_size: int = Field(
        default=100,
        ge=1,
        description="Maximum messages requested per FETCH command",
    )
    start_position: Literal["latest", "beginning"] = Field(
        default="latest",
        description="Where the watermark starts: current mailbox size, or zero",
    )
    timeout_seconds: float = Field(default=30.0, description="Socket timeout for IMAP commands")
    max_mime_depth: int = Field(
        default=64,
        ge=1,
        description="Deepest multipart nesting accepted before a message is rejected",
    )
    extract_single_part: bool = Field(
        default=False,
        description="Also extract text from messages that are not multipart",
    )

    @model_validator(mode="before")
    @classmethod
    def _split_address(cls, data: Any) -> Any:
        """Accept ``address: host[:port]`` in place of ``host``/``port``."""
        if isinstance(data, dict) and "address" in data:
            data = dict(data)
            host, sep, port = str(data.pop("address")).rpartition(":")
            if sep and port.isdigit():
                data.setdefault("host", host)
                data.setdefault("port", int(port))
            else:
                data.setdefault("host", str(host or port))
        return data


class Account(BaseModel):
    """Credentials for one polled mailbox."""

    model_config = {"frozen": True}

    email: str = Field(description="IMAP login, also the account's identity")
    password: SecretStr = Field(description="IMAP login password")


class RetryConfig(BaseSettings):
    """Retry / backoff settings driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=5, description="Maximum attempts per retried operation")
    initial_wait_seconds: float = Field(
        default=1.0,
        description="Initial backoff wait in seconds",
    )
    max_wait_seconds: float = Field(
        default=60.0,
        description="Maximum backoff wait in seconds",
    )
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class KafkaConfig(BaseSettings):
    """Kafka connection and topic settings for the Kafka sink."""

    model_config = {"env_prefix": "KAFKA_"}

    bootstrap_servers: str = Field(
        default="localhost:9092",
        description="Comma-separated Kafka bootstrap servers",
    )
    topic: str = Field(
        default="extracted-mail",
        description="Topic extracted messages are published to",
    )
    producer_acks: str = Field(
        default="all",
        description="Producer acknowledgement level",
    )
    producer_compression: str = Field(
        default="gzip",
        description="Compression codec for produced messages",
    )


class SinkConfig(BaseSettings):
    """Where extracted messages go."""

    model_config = {"env_prefix": "SINK_"}

    kind: Literal["log", "kafka"] = Field(
        default="log",
        description="log: write header fields and text to the log; kafka: publish JSON",
    )


class LoggingConfig(BaseSettings):
    """Log rendering settings."""

    model_config = {"env_prefix": "LOG_"}

    json_output: bool = Field(
        default=True,
        description="Render JSON lines (True) or human-friendly console output",
    )
    level: str = Field(default="INFO", description="Root log level name")


class MailtapConfig(BaseSettings):
    """Root configuration for a mailtap process.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "MAILTAP_"}

    name: str = Field(default="mailtap", description="Service name reported by health probes")
    imap: ImapConfig = Field(default_factory=ImapConfig)
    credentials: list[Account] = Field(
        min_length=1,
        description="Accounts to poll; one poller each",
    )
    retry: RetryConfig = Field(default_factory=RetryConfig)
    sink: SinkConfig = Field(default_factory=SinkConfig)
    kafka: KafkaConfig = Field(default_factory=KafkaConfig)
    log: LoggingConfig = Field(default_factory=LoggingConfig)
    health_port: int = Field(
        default=8080,
        description="Port for health probe endpoints (0 disables the server)",
    )
    shutdown_grace_seconds: float = Field(
        default=10.0,
        description="Seconds pollers get to finish a tick after a shutdown signal",
    )


def load_config(path: Path | None = None) -> MailtapConfig:
    """Build the configuration, reading *path* as YAML when given."""
    if path is None:
        return MailtapConfig()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open() as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Config file is empty or invalid: {path}")
    return MailtapConfig(**data)
