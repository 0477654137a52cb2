"""Sinks that receive extracted mail."""

from __future__ import annotations

from aiokafka import AIOKafkaProducer
import structlog

from .config import KafkaConfig, RetryConfig
from .interface import Sink
from .models import ExtractedMail
from .retry import with_retry

logger = structlog.get_logger()


class LogSink(Sink):
    """Writes Date, From, To, Subject and the extracted text to the log."""

    async def deliver(self, mail: ExtractedMail) -> None:
        logger.info(
            "mail_extracted",
            account=mail.account,
            mailbox=mail.mailbox,
            sequence_number=mail.sequence_number,
            date=mail.get("Date"),
            from_=mail.get("From"),
            to=mail.get("To"),
            subject=mail.get("Subject"),
            text_content=mail.text,
        )


class KafkaSink(Sink):
    """Publishes each :class:`ExtractedMail` as JSON to a Kafka topic.

    Messages are keyed by account so one account's mail stays ordered
    within a partition.  Sends are retried with exponential backoff;
    the final failure propagates to the poller.
    """

    def __init__(self, config: KafkaConfig, retry: RetryConfig) -> None:
        self._config = config
        self._retry = retry
        self._producer: AIOKafkaProducer | None = None

    async def start(self) -> None:
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._config.bootstrap_servers,
            acks=self._config.producer_acks,
            compression_type=self._config.producer_compression,
        )
        await self._producer.start()
        logger.info("kafka_producer_started", servers=self._config.bootstrap_servers)

    async def stop(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
            logger.info("kafka_producer_stopped")

    async def deliver(self, mail: ExtractedMail) -> None:
        assert self._producer is not None, "Producer not started"
        producer = self._producer
        value = mail.model_dump_json().encode("utf-8")

        @with_retry(self._retry)
        async def _send() -> None:
            await producer.send_and_wait(
                self._config.topic,
                value=value,
                key=mail.account.encode("utf-8"),
            )

        await _send()
        logger.debug(
            "mail_published",
            topic=self._config.topic,
            account=mail.account,
            sequence_number=mail.sequence_number,
        )
