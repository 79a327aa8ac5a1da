from clients.chain_reader import ChainReader, ChainReaderError
from clients.kafka_bus import BusError, BusPublishError, KafkaBus

__all__ = [
    "BusError",
    "BusPublishError",
    "ChainReader",
    "ChainReaderError",
    "KafkaBus",
]
