"""Configuration loading: YAML file, then environment variables."""

import logging
import os
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

import yaml

from trace_sql_adapter.models import StoreConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "TRACE_SQL_"


def load_config(path: str | None = None, environ: Mapping[str, str] | None = None) -> StoreConfig:
    """Build a ``StoreConfig`` from an optional YAML file and ``TRACE_SQL_*`` env vars.

    Environment variables take priority over the file.
    """
    if environ is None:
        environ = os.environ
    data: dict[str, Any] = {}

    # 1. YAML file (lowest priority)
    if path:
        with open(path) as f:
            data.update(yaml.safe_load(f) or {})

    # 2. Env vars
    env_map = {
        "DIALECT": "dialect",
        "DSN": "dsn",
        "DB_PATH": "db_path",
        "LOG_LEVEL": "log_level",
        "MAX_TRACES": "default_num_traces",
        "MAX_SPAN_AGE_SECONDS": "max_span_age",
    }
    for env_key, config_key in env_map.items():
        val = environ.get(ENV_PREFIX + env_key)
        if val is None:
            continue
        if config_key == "default_num_traces":
            data[config_key] = int(val)
        elif config_key == "max_span_age":
            data[config_key] = timedelta(seconds=float(val))
        else:
            data[config_key] = val

    config = StoreConfig(**data)
    logger.debug("Loaded config: dialect=%s, default_num_traces=%d", config.dialect, config.default_num_traces)
    return config


def configure_logging(config: StoreConfig) -> None:
    """Install a root handler at ``config.log_level`` for hosts without their own logging setup."""
    logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))
