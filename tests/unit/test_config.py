"""Tests for config loading."""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest
import yaml
from trace_sql_adapter.config import configure_logging, load_config


class TestLoadConfig:
    def test_defaults(self):
        config = load_config(environ={})
        assert config.dialect == "sqlite"
        assert config.dsn is None
        assert config.default_num_traces == 20
        assert config.max_span_age == timedelta(hours=24)

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "dialect": "postgres",
                    "dsn": "postgresql://tracer@db/traces",
                    "pool_max_size": 4,
                    "default_num_traces": 50,
                }
            )
        )
        config = load_config(str(path), environ={})
        assert config.dialect == "postgres"
        assert config.dsn == "postgresql://tracer@db/traces"
        assert config.pool_max_size == 4
        assert config.default_num_traces == 50

    def test_empty_yaml_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("")
        assert load_config(str(path), environ={}).dialect == "sqlite"

    def test_env_overrides_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("dialect: postgres\ndefault_num_traces: 50\n")
        environ = {
            "TRACE_SQL_DIALECT": "sqlite",
            "TRACE_SQL_DB_PATH": str(tmp_path / "spans.db"),
            "TRACE_SQL_MAX_TRACES": "5",
            "TRACE_SQL_MAX_SPAN_AGE_SECONDS": "3600",
            "TRACE_SQL_LOG_LEVEL": "DEBUG",
        }
        config = load_config(str(path), environ=environ)
        assert config.dialect == "sqlite"
        assert config.db_path == str(tmp_path / "spans.db")
        assert config.default_num_traces == 5
        assert config.max_span_age == timedelta(hours=1)
        assert config.log_level == "DEBUG"

    def test_reads_process_environment(self, monkeypatch):
        monkeypatch.setenv("TRACE_SQL_DSN", "postgresql://localhost/traces")
        assert load_config().dsn == "postgresql://localhost/traces"

    def test_bad_number(self):
        with pytest.raises(ValueError):
            load_config(environ={"TRACE_SQL_MAX_TRACES": "many"})


class TestConfigureLogging:
    def test_applies_level(self):
        with patch("trace_sql_adapter.config.logging.basicConfig") as basic:
            configure_logging(load_config(environ={"TRACE_SQL_LOG_LEVEL": "debug"}))
        basic.assert_called_once_with(level=logging.DEBUG)

    def test_unknown_level_falls_back_to_info(self):
        with patch("trace_sql_adapter.config.logging.basicConfig") as basic:
            configure_logging(load_config(environ={"TRACE_SQL_LOG_LEVEL": "chatty"}))
        basic.assert_called_once_with(level=logging.INFO)
