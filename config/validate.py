"""
Startup validation of the monitor's config files.

Each file has a list of required dotted keys plus optional lower bounds on
numeric settings. validate_all_configs() collects every problem before
raising, so one run reports the whole misconfiguration.
"""

from typing import Any, Callable

from config.loader import ConfigLoader, get_config


class ConfigValidationError(ValueError):
    """Raised when a required config key is missing or invalid."""

    pass


_REQUIRED_KEYS: dict[str, list[str]] = {
    "chains/56.json": [
        "chain_id",
        "rpc.ws_url",
        "rpc.http_url",
        "contracts.token_manager_v1",
        "contracts.token_manager_v2",
        "pancake_pairs",
    ],
    "connection.json": [
        "max_reconnect_attempts",
        "reconnect_delay_ms",
        "health_check_interval_seconds",
        "connection_timeout_seconds",
    ],
    "cache.json": ["block_timestamps.capacity", "block_timestamps.max_retries"],
    "kafka.json": ["bootstrap_servers", "client_id", "topics.created", "topics.trade", "topics.migrated"],
    "monitor.json": [
        "events.token_create",
        "events.token_purchase",
        "events.token_sale",
        "events.liquidity_added",
        "events.trade_stop",
        "events.pair_swap",
    ],
}

_MINIMUMS: dict[str, dict[str, int]] = {
    "connection.json": {"max_reconnect_attempts": 1},
    "cache.json": {"block_timestamps.capacity": 1},
}


def _lookup(config: Any, dotted: str) -> tuple[bool, Any]:
    node = config
    for part in dotted.split("."):
        if not isinstance(node, dict) or part not in node:
            return False, None
        node = node[part]
    return True, node


def _validate(config: dict[str, Any], config_name: str) -> list[str]:
    missing = [key for key in _REQUIRED_KEYS[config_name] if not _lookup(config, key)[0]]
    if missing:
        return missing
    errors = []
    for key, floor in _MINIMUMS.get(config_name, {}).items():
        _, value = _lookup(config, key)
        if int(value) < floor:
            errors.append(f"{key}: must be >= {floor}")
    return errors


def validate_chain_config(config: dict[str, Any]) -> list[str]:
    return _validate(config, "chains/56.json")


def validate_connection_config(config: dict[str, Any]) -> list[str]:
    return _validate(config, "connection.json")


def validate_cache_config(config: dict[str, Any]) -> list[str]:
    return _validate(config, "cache.json")


def validate_kafka_config(config: dict[str, Any]) -> list[str]:
    return _validate(config, "kafka.json")


def validate_monitor_config(config: dict[str, Any]) -> list[str]:
    return _validate(config, "monitor.json")


def _sources(loader: ConfigLoader) -> dict[str, tuple[Callable[[], dict], Callable[[dict], list[str]]]]:
    return {
        "chains/56.json": (loader.get_chain_config, validate_chain_config),
        "connection.json": (loader.get_connection_config, validate_connection_config),
        "cache.json": (loader.get_cache_config, validate_cache_config),
        "kafka.json": (loader.get_kafka_config, validate_kafka_config),
        "monitor.json": (loader.get_monitor_config, validate_monitor_config),
    }


def validate_all_configs() -> None:
    """
    Validate every config file the monitor reads.

    Raises:
        ConfigValidationError: listing, per file, each missing key or bad value.
    """
    problems: dict[str, list[str]] = {}
    for config_name, (load, check) in _sources(get_config()).items():
        config = load()
        errors = check(config) if config else ["Config file is empty or not found"]
        if errors:
            problems[config_name] = errors

    if problems:
        report = ["Configuration validation failed:"]
        for config_name, errors in problems.items():
            report.append(f"\n  {config_name}:")
            report.extend(f"    - missing: {error}" for error in errors)
        raise ConfigValidationError("\n".join(report))
