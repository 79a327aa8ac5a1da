"""
Unit tests for clients/kafka_bus.py.

confluent_kafka's Producer, AdminClient and Consumer are patched at the
module boundary; no broker is needed.
"""

import asyncio
import json
import threading
from unittest.mock import MagicMock, patch

import pytest
from confluent_kafka import KafkaError, KafkaException

from clients.kafka_bus import BusError, BusPublishError, KafkaBus


@pytest.fixture
def kafka():
    """Patched confluent_kafka classes as a namespace of mocks."""
    with patch("clients.kafka_bus.setup_module_logger") as mock_logger, patch(
        "clients.kafka_bus.Producer"
    ) as producer_cls, patch("clients.kafka_bus.AdminClient") as admin_cls, patch(
        "clients.kafka_bus.NewTopic"
    ) as new_topic_cls, patch("clients.kafka_bus.Consumer") as consumer_cls:
        mock_logger.return_value = MagicMock()
        producer_cls.return_value.flush.return_value = 0
        new_topic_cls.side_effect = lambda name, **kwargs: name
        ns = MagicMock()
        ns.producer_cls = producer_cls
        ns.producer = producer_cls.return_value
        ns.admin_cls = admin_cls
        ns.admin = admin_cls.return_value
        ns.new_topic_cls = new_topic_cls
        ns.consumer_cls = consumer_cls
        ns.consumer = consumer_cls.return_value
        yield ns


@pytest.fixture
def bus(kafka):
    return KafkaBus("localhost:9092", "test-client", delivery_timeout=2.0)


def _done_future():
    future = MagicMock()
    future.result.return_value = None
    return future


# ===========================================================================
# Topics
# ===========================================================================


class TestEnsureTopics:
    @pytest.mark.asyncio
    async def test_creates_only_missing(self, bus, kafka):
        kafka.admin.list_topics.return_value.topics = {"token.raw.created": object()}
        kafka.admin.create_topics.return_value = {
            "token.raw.trade": _done_future(),
            "token.raw.migrated": _done_future(),
        }

        created = await bus.ensure_topics(["token.raw.created", "token.raw.trade", "token.raw.migrated"])

        assert created == ["token.raw.trade", "token.raw.migrated"]
        assert kafka.admin.create_topics.call_args.args[0] == ["token.raw.trade", "token.raw.migrated"]
        kafka.new_topic_cls.assert_any_call("token.raw.trade", num_partitions=1, replication_factor=1)

    @pytest.mark.asyncio
    async def test_nothing_to_create(self, bus, kafka):
        kafka.admin.list_topics.return_value.topics = {"a": 1, "b": 2}

        assert await bus.ensure_topics(["a", "b"]) == []
        kafka.admin.create_topics.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_exists_race_ignored(self, bus, kafka):
        kafka.admin.list_topics.return_value.topics = {}
        future = MagicMock()
        future.result.side_effect = KafkaException(KafkaError(KafkaError.TOPIC_ALREADY_EXISTS))
        kafka.admin.create_topics.return_value = {"a": future}

        assert await bus.ensure_topics(["a"]) == []

    @pytest.mark.asyncio
    async def test_other_create_error_raises(self, bus, kafka):
        kafka.admin.list_topics.return_value.topics = {}
        future = MagicMock()
        future.result.side_effect = KafkaException(KafkaError(KafkaError.TOPIC_AUTHORIZATION_FAILED))
        kafka.admin.create_topics.return_value = {"a": future}

        with pytest.raises(BusError, match="Failed to create topic a"):
            await bus.ensure_topics(["a"])

    @pytest.mark.asyncio
    async def test_unreachable_broker(self, bus, kafka):
        kafka.admin.list_topics.side_effect = KafkaException(KafkaError(KafkaError._TRANSPORT))

        with pytest.raises(BusError, match="Failed to list topics"):
            await bus.ensure_topics(["a"])


# ===========================================================================
# Publish
# ===========================================================================


class TestPublish:
    @pytest.mark.asyncio
    async def test_json_payload_keyed(self, bus, kafka):
        await bus.publish("token.raw.trade", "0xabc", {"market_cap": 5.0, "slot": 2**60})

        kwargs = kafka.producer.produce.call_args.kwargs
        assert kwargs["topic"] == "token.raw.trade"
        assert kwargs["key"] == b"0xabc"
        assert json.loads(kwargs["value"]) == {"market_cap": 5.0, "slot": str(2**60)}
        kafka.producer.flush.assert_called_with(2.0)

    @pytest.mark.asyncio
    async def test_producer_created_once(self, bus, kafka):
        await bus.publish("t", "k1", {})
        await bus.publish("t", "k2", {})

        kafka.producer_cls.assert_called_once()
        config = kafka.producer_cls.call_args.args[0]
        assert config["bootstrap.servers"] == "localhost:9092"
        assert config["client.id"] == "test-client"

    @pytest.mark.asyncio
    async def test_concurrent_first_publishes_share_one_producer(self, bus, kafka):
        created_on = []

        def _create(config):
            created_on.append(threading.get_ident())
            return kafka.producer

        kafka.producer_cls.side_effect = _create

        await asyncio.gather(*(bus.publish("t", f"k{i}", {}) for i in range(5)))

        assert created_on == [threading.get_ident()]
        assert kafka.producer.produce.call_count == 5

    @pytest.mark.asyncio
    async def test_delivery_error_raises(self, bus, kafka):
        def _produce(topic, key, value, on_delivery):
            on_delivery(KafkaError(KafkaError._MSG_TIMED_OUT), None)

        kafka.producer.produce.side_effect = _produce

        with pytest.raises(BusPublishError, match="Delivery to t failed"):
            await bus.publish("t", "k", {})

    @pytest.mark.asyncio
    async def test_unflushed_message_raises(self, bus, kafka):
        kafka.producer.flush.return_value = 1

        with pytest.raises(BusPublishError, match="not confirmed"):
            await bus.publish("t", "k", {})

    @pytest.mark.asyncio
    async def test_full_queue_wrapped(self, bus, kafka):
        kafka.producer.produce.side_effect = BufferError("queue full")

        with pytest.raises(BusPublishError, match="queue full"):
            await bus.publish("t", "k", {})

    def test_close_flushes(self, bus, kafka):
        bus._get_producer()

        bus.close()
        bus.close()

        kafka.producer.flush.assert_called_once_with(2.0)


# ===========================================================================
# Consume
# ===========================================================================


def _message(topic="token.raw.created", key=b"0xabc", value=b'{"token_mint": "0x1"}', error=None):
    msg = MagicMock()
    msg.error.return_value = error
    msg.topic.return_value = topic
    msg.key.return_value = key
    msg.value.return_value = value
    return msg


class TestConsume:
    def test_yields_decoded_messages(self, bus, kafka):
        eof = MagicMock()
        eof.code.return_value = KafkaError._PARTITION_EOF
        kafka.consumer.poll.side_effect = [
            None,
            _message(error=eof),
            _message(value=b"not json"),
            _message(),
        ]

        messages = bus.consume(["token.raw.created"], group_id="console", from_beginning=True)
        first = next(messages)
        messages.close()

        assert first.topic == "token.raw.created"
        assert first.key == "0xabc"
        assert first.payload == {"token_mint": "0x1"}
        config = kafka.consumer_cls.call_args.args[0]
        assert config["group.id"] == "console"
        assert config["auto.offset.reset"] == "earliest"
        kafka.consumer.subscribe.assert_called_once_with(["token.raw.created"])
        kafka.consumer.close.assert_called_once()
