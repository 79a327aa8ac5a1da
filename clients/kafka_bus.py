"""
Kafka bus client: topic provisioning, keyed JSON publish, and a console-side
consumer generator.

confluent_kafka is synchronous, so produce + flush run in a worker thread to
keep the event loop free. Each publish waits for its own delivery report, which
gives at-least-once semantics per call.

Usage:
    bus = KafkaBus("localhost:9092", "binance-token-monitor")
    await bus.ensure_topics(["token.raw.created", "token.raw.trade"])
    await bus.publish("token.raw.trade", tx_hash, record)
    bus.close()
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Iterator

from confluent_kafka import Consumer, KafkaError, KafkaException, Producer
from confluent_kafka.admin import AdminClient, NewTopic

from bot_logging.logger_manager import setup_module_logger
from shared.serialization_utils import dumps
from shared.types import BusMessage


class BusError(Exception):
    """Raised when the broker cannot be reached or refuses an admin operation."""


class BusPublishError(BusError):
    """Raised when a message is not acknowledged by the broker."""


class KafkaBus:
    """
    Thin async wrapper over confluent_kafka Producer and AdminClient.

    The producer and admin client are created lazily so constructing the bus
    never touches the network.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        client_id: str,
        delivery_timeout: float = 10.0,
        producer_config: dict[str, Any] | None = None,
    ) -> None:
        self._bootstrap_servers = bootstrap_servers
        self._client_id = client_id
        self._delivery_timeout = delivery_timeout
        self._producer_config = producer_config or {}
        self._producer: Producer | None = None
        self._admin: AdminClient | None = None

        self._logger = setup_module_logger("kafka_bus", "kafka_bus.log", module_folder="Kafka_Logs")

    # ------------------------------------------------------------------
    # Clients
    # ------------------------------------------------------------------

    def _base_config(self) -> dict[str, Any]:
        return {"bootstrap.servers": self._bootstrap_servers, "client.id": self._client_id}

    def _get_producer(self) -> Producer:
        if self._producer is None:
            self._producer = Producer({**self._base_config(), **self._producer_config})
            self._logger.info("Kafka producer created (%s)", self._bootstrap_servers)
        return self._producer

    def _get_admin(self) -> AdminClient:
        if self._admin is None:
            self._admin = AdminClient(self._base_config())
        return self._admin

    # ------------------------------------------------------------------
    # Topics
    # ------------------------------------------------------------------

    async def ensure_topics(
        self, names: list[str], num_partitions: int = 1, replication_factor: int = 1
    ) -> list[str]:
        """Create the topics that do not exist yet. Returns the names created."""
        admin = self._get_admin()
        try:
            metadata = await asyncio.to_thread(admin.list_topics, timeout=self._delivery_timeout)
        except KafkaException as e:
            raise BusError(f"Failed to list topics: {e}") from e

        existing = set(metadata.topics)
        missing = [name for name in names if name not in existing]
        if not missing:
            self._logger.info("All topics exist: %s", ", ".join(names))
            return []

        futures = admin.create_topics(
            [
                NewTopic(name, num_partitions=num_partitions, replication_factor=replication_factor)
                for name in missing
            ]
        )
        created = []
        for name, future in futures.items():
            try:
                await asyncio.to_thread(future.result)
                created.append(name)
                self._logger.info("Created topic %s", name)
            except KafkaException as e:
                if _error_code(e) == KafkaError.TOPIC_ALREADY_EXISTS:
                    continue
                raise BusError(f"Failed to create topic {name}: {e}") from e
        return created

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(self, topic: str, key: str, payload: dict[str, Any]) -> None:
        """Publish one JSON message and wait for its delivery report."""
        value = dumps(payload).encode("utf-8")
        try:
            # Created on the loop thread so concurrent publishes share one producer
            producer = self._get_producer()
            await asyncio.to_thread(self._produce_and_flush, producer, topic, key, value)
        except BusPublishError:
            raise
        except (KafkaException, BufferError) as e:
            raise BusPublishError(f"Failed to publish to {topic}: {e}") from e
        self._logger.info("Published to %s (key=%s)", topic, key)

    def _produce_and_flush(self, producer: Producer, topic: str, key: str, value: bytes) -> None:
        errors: list[Any] = []

        def _delivery_report(err: Any, msg: Any) -> None:
            if err is not None:
                errors.append(err)

        producer.produce(topic=topic, key=key.encode("utf-8"), value=value, on_delivery=_delivery_report)
        remaining = producer.flush(self._delivery_timeout)
        if errors:
            raise BusPublishError(f"Delivery to {topic} failed: {errors[0]}")
        if remaining:
            raise BusPublishError(
                f"Delivery to {topic} not confirmed within {self._delivery_timeout}s"
            )

    def close(self) -> None:
        if self._producer is not None:
            remaining = self._producer.flush(self._delivery_timeout)
            if remaining:
                self._logger.warning("%d messages undelivered at shutdown", remaining)
            self._producer = None
            self._logger.info("Kafka producer closed")
        self._admin = None

    # ------------------------------------------------------------------
    # Consume
    # ------------------------------------------------------------------

    def consume(
        self,
        topics: list[str],
        group_id: str,
        from_beginning: bool = False,
        poll_timeout: float = 1.0,
        consumer_config: dict[str, Any] | None = None,
    ) -> Iterator[BusMessage]:
        """Blocking generator over messages from ``topics``; closes the consumer on exit."""
        consumer = Consumer(
            {
                **self._base_config(),
                "group.id": group_id,
                "auto.offset.reset": "earliest" if from_beginning else "latest",
                **(consumer_config or {}),
            }
        )
        consumer.subscribe(topics)
        self._logger.info("Consuming %s (group=%s)", ", ".join(topics), group_id)
        try:
            while True:
                msg = consumer.poll(poll_timeout)
                if msg is None:
                    continue
                if msg.error():
                    if msg.error().code() != KafkaError._PARTITION_EOF:
                        self._logger.error("Consumer error: %s", msg.error())
                    continue
                key = msg.key().decode("utf-8") if msg.key() is not None else None
                try:
                    payload = json.loads(msg.value())
                except (TypeError, ValueError) as e:
                    self._logger.warning("Skipping non-JSON message on %s: %s", msg.topic(), e)
                    continue
                yield BusMessage(topic=msg.topic(), key=key, payload=payload)
        finally:
            consumer.close()


def _error_code(exc: KafkaException) -> Any:
    if exc.args and hasattr(exc.args[0], "code"):
        return exc.args[0].code()
    return None
