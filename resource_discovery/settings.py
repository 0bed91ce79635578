"""
Configuration loading.

Settings come from a YAML file (``config.yaml`` by default) layered over
built-in defaults, then environment variable overrides:

- RESOURCE_DISCOVERY_CONFIG: Path of the YAML file
- SEARCH_HOST, SEARCH_PORT, SEARCH_PROTOCOL: Document store endpoint
- SEARCH_USERNAME, SEARCH_PASSWORD: Document store basic auth
- AWS_PRIMARY_REGION: Region used for STS and Organizations calls
- LOG_LEVEL: Package log level
"""

import copy
import logging
import os
from pathlib import Path
from typing import Optional

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "RESOURCE_DISCOVERY_CONFIG"

DEFAULTS = {
    "primary_region": "us-east-1",
    # Empty list means every region the Config service supports
    "regions": [],
    "query_limit": 1000,
    "indices": ["awsorganization", "awsaccount", "awsregion", "awsconfigsnapshot"],
    "log_level": "INFO",
    "search": {
        "host": "localhost",
        "port": 9200,
        "protocol": "https",
        "username": "",
        "password": "",
        "verify_certs": True,
        "aws_sigv4": False,
        "timeout": 30,
    },
}

_SEARCH_OVERRIDES = {
    "SEARCH_HOST": "host",
    "SEARCH_PORT": "port",
    "SEARCH_PROTOCOL": "protocol",
    "SEARCH_USERNAME": "username",
    "SEARCH_PASSWORD": "password",
}


def _merge(base: dict, override: dict) -> dict:
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def config_path(path: Optional[str] = None) -> Path:
    """Resolve the configuration file path."""
    if path:
        return Path(path)
    return Path(os.environ.get(CONFIG_ENV_VAR, "config.yaml"))


def load_config(path: Optional[str] = None) -> dict:
    """Load configuration from YAML with environment variable overrides.

    Raises:
        ValueError: If a setting has an invalid value
    """
    source = config_path(path)
    if not source.exists():
        logger.warning(
            "Configuration file not found, using defaults",
            extra={"action": "load_config", "path": str(source)},
        )
        config = copy.deepcopy(DEFAULTS)
    else:
        with open(source) as f:
            config = _merge(DEFAULTS, yaml.safe_load(f) or {})

    for env_var, key in _SEARCH_OVERRIDES.items():
        if os.environ.get(env_var):
            config["search"][key] = os.environ[env_var]
    if os.environ.get("AWS_PRIMARY_REGION"):
        config["primary_region"] = os.environ["AWS_PRIMARY_REGION"]
    if os.environ.get("LOG_LEVEL"):
        config["log_level"] = os.environ["LOG_LEVEL"]

    validate_config(config)
    return config


def validate_config(config: dict) -> None:
    """Check setting types and values, coercing numeric strings in place."""
    search = config["search"]
    try:
        search["port"] = int(search["port"])
    except (TypeError, ValueError):
        raise ValueError(f"search.port must be an integer, got {search['port']!r}")

    if search["protocol"] not in ("http", "https"):
        raise ValueError(
            f"search.protocol must be 'http' or 'https', got {search['protocol']!r}"
        )

    try:
        config["query_limit"] = int(config["query_limit"])
    except (TypeError, ValueError):
        raise ValueError(f"query_limit must be an integer, got {config['query_limit']!r}")
    if config["query_limit"] < 1:
        raise ValueError("query_limit must be positive")

    if not isinstance(config.get("regions") or [], list):
        raise ValueError("regions must be a list of region names")
    config["regions"] = config.get("regions") or []
