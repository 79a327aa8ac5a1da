"""
Configuration loader for BSC Token Monitor.

JSON files under config/ hold the defaults; .env (via python-dotenv) and the
process environment override endpoints and credentials.

Usage:
    from config.loader import get_config, get_topic

    config = get_config()
    chain_config = config.get_chain_config(56)
    topic = get_topic("trade")
"""

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from shared.constants import BSC_CHAIN_ID

load_dotenv()

_CONFIG_DIR = Path(__file__).parent


def _load_json(filepath: Path) -> Any:
    """Read one JSON file; a missing or malformed file yields {}."""
    if not filepath.is_file():
        print(f"[CONFIG_WARN] Config file not found: {filepath}")
        return {}
    try:
        return json.loads(filepath.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        print(f"[CONFIG_ERROR] Invalid JSON in {filepath}: {e}")
        return {}


def get_env_var(var_name: str, default_value: Any, var_type: type) -> Any:
    """Typed environment lookup; unset or unparsable values fall back to the default."""
    raw = os.getenv(var_name)
    if raw is None:
        return default_value
    if var_type is bool:
        return raw.strip().lower() in ("true", "1", "yes")
    try:
        return var_type(raw)
    except (ValueError, TypeError):
        return default_value


class ConfigLoader:
    """
    Central configuration manager for the BSC Token Monitor.

    Each config/<name>.json file is parsed once and memoised; call
    clear_cache() to force a re-read.
    """

    _instance: Optional["ConfigLoader"] = None

    def __init__(self, config_dir: Path = _CONFIG_DIR):
        self._config_dir = config_dir

    @classmethod
    def get_instance(cls) -> "ConfigLoader":
        """Singleton accessor."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    # ------------------------------------------------------------------
    # Config sections
    # ------------------------------------------------------------------

    @lru_cache(maxsize=32)
    def get_config_file(self, config_name: str) -> Dict[str, Any]:
        """Parsed config/<config_name>.json ({} when absent)."""
        data = _load_json(self._config_dir / f"{config_name}.json")
        return data if isinstance(data, dict) else {}

    def get_chain_config(self, chain_id: int = BSC_CHAIN_ID) -> Dict[str, Any]:
        """RPC endpoints, TokenManager addresses and PancakeSwap pairs for a chain."""
        return self.get_config_file(f"chains/{chain_id}")

    def get_app_config(self) -> Dict[str, Any]:
        return self.get_config_file("app")

    def get_connection_config(self) -> Dict[str, Any]:
        """Reconnect attempts and delay, health probe interval, connect timeout."""
        return self.get_config_file("connection")

    def get_cache_config(self) -> Dict[str, Any]:
        return self.get_config_file("cache")

    def get_kafka_config(self) -> Dict[str, Any]:
        """Broker address, client id, topic names and producer settings."""
        return self.get_config_file("kafka")

    def get_monitor_config(self) -> Dict[str, Any]:
        """Per-event subscription flags and the pair swap publish switch."""
        return self.get_config_file("monitor")

    @lru_cache(maxsize=16)
    def get_abi(self, abi_name: str) -> list:
        """Contract ABI from config/abis/, stored either bare or under "abi"."""
        data = _load_json(self._config_dir / "abis" / f"{abi_name}.json")
        if isinstance(data, list):
            return data
        return data.get("abi", [])

    # ------------------------------------------------------------------
    # Endpoints and topics
    # ------------------------------------------------------------------

    def get_ws_url(self) -> str:
        """
        WebSocket endpoint, first match wins:
        BSC_RPC_URL_WS, then ALCHEMY_API_KEY applied to the chain's
        alchemy_ws_template, then the chain's public ws_url.
        """
        rpc = self.get_chain_config().get("rpc", {})
        url = get_env_var("BSC_RPC_URL_WS", "", str)
        if url:
            return url
        api_key = get_env_var("ALCHEMY_API_KEY", "", str)
        template = rpc.get("alchemy_ws_template")
        if api_key and template:
            return template.format(api_key=api_key)
        return rpc.get("ws_url", "")

    def get_http_url(self) -> str:
        """HTTP endpoint for eth_call reads (BSC_RPC_URL_HTTP overrides)."""
        default = self.get_chain_config().get("rpc", {}).get("http_url", "")
        return get_env_var("BSC_RPC_URL_HTTP", default, str)

    def get_topic_name(self, topic_key: str) -> str:
        """Kafka topic for created / trade / migrated, defaulting to token.raw.<key>."""
        return self.get_kafka_config().get("topics", {}).get(topic_key, f"token.raw.{topic_key}")

    def clear_cache(self) -> None:
        """Forget every parsed file (tests and config reloads)."""
        self.get_config_file.cache_clear()
        self.get_abi.cache_clear()


# ---------------------------------------------------------------------------
# Module-level convenience functions
# ---------------------------------------------------------------------------


def get_config() -> ConfigLoader:
    """Get the singleton ConfigLoader instance."""
    return ConfigLoader.get_instance()


def get_topic(topic_key: str) -> str:
    return get_config().get_topic_name(topic_key)
