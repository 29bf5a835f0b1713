"""Unit tests for mixpki.config module."""

from datetime import timedelta

import pytest

from mixpki.config import (
    ClientConfig,
    Config,
    EpochConfig,
    LedgerConfig,
    LoggingConfig,
    LogLevel,
)
from mixpki.errors import ConfigError

SAMPLE = """
logging:
  level: debug
  file: /var/log/mixpki.log
epoch:
  period: 600
  heights_per_epoch: 10
ledger:
  rpc_address: http://127.0.0.1:8888
  inclusion_timeout: 30
  require_proof: false
client:
  request_timeout: 5
  max_retrieval_attempts: 3
"""


class TestLogLevel:
    """Test LogLevel enum."""

    def test_levels(self):
        """Test all log levels are defined."""
        assert [level.value for level in LogLevel] == ["ERROR", "WARNING", "NOTICE", "INFO", "DEBUG"]


class TestSectionDefaults:
    """Test section dataclass defaults."""

    def test_logging_defaults(self):
        config = LoggingConfig()
        assert config.disable is False
        assert config.file is None
        assert config.level == "NOTICE"

    def test_epoch_defaults(self):
        config = EpochConfig()
        assert config.period == timedelta(minutes=20)
        assert config.heights_per_epoch == 5

    def test_client_defaults(self):
        config = ClientConfig()
        assert config.request_timeout == 30.0
        assert config.initial_max_pki_retrieval_delay == 30.0
        assert config.validate() == []

    def test_ledger_requires_rpc_address(self):
        assert "RPC address is missing" in LedgerConfig().validate()
        assert LedgerConfig(rpc_address="http://127.0.0.1:8888").validate() == []


class TestSectionValidation:
    """Test per-section validation."""

    def test_level_is_normalized(self):
        config = LoggingConfig(level="info")
        assert config.validate() == []
        assert config.level == "INFO"

    def test_invalid_level(self):
        assert LoggingConfig(level="LOUD").validate()

    def test_relative_log_file(self):
        assert LoggingConfig(file="mixpki.log").validate() == ["log file path must be absolute"]

    def test_invalid_epoch(self):
        errors = EpochConfig(period=timedelta(0), heights_per_epoch=0).validate()
        assert len(errors) == 2

    def test_invalid_backoff(self):
        assert ClientConfig(retry_backoff=10.0, retry_backoff_max=1.0).validate()


class TestConfig:
    """Test top level Config loading."""

    def test_load(self):
        """Test a full YAML document."""
        config = Config.load(SAMPLE, environ={})
        assert config.logging.level == "DEBUG"
        assert config.logging.file == "/var/log/mixpki.log"
        assert config.epoch.period == timedelta(minutes=10)
        assert config.epoch.heights_per_epoch == 10
        assert config.ledger.rpc_address == "http://127.0.0.1:8888"
        assert config.ledger.inclusion_timeout == 30.0
        assert config.ledger.require_proof is False
        assert config.client.request_timeout == 5.0
        assert config.client.max_retrieval_attempts == 3

    def test_load_file(self, tmp_path):
        path = tmp_path / "mixpki.yaml"
        path.write_text(SAMPLE)
        assert Config.load_file(path, environ={}).ledger.rpc_address == "http://127.0.0.1:8888"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            Config.load_file(tmp_path / "absent.yaml", environ={})

    def test_environment_overrides(self):
        """Test MIXPKI_* variables take precedence over the file."""
        environ = {
            "MIXPKI_RPC_ADDRESS": "http://10.0.0.9:8888",
            "MIXPKI_LOG_LEVEL": "warning",
            "MIXPKI_REQUEST_TIMEOUT": "2.5",
        }
        config = Config.load(SAMPLE, environ=environ)
        assert config.ledger.rpc_address == "http://10.0.0.9:8888"
        assert config.logging.level == "WARNING"
        assert config.client.request_timeout == 2.5

    def test_environment_supplies_missing_value(self):
        config = Config.load("", environ={"MIXPKI_RPC_ADDRESS": "http://127.0.0.1:8888"})
        assert config.ledger.rpc_address == "http://127.0.0.1:8888"

    def test_invalid_document(self):
        """Test validation errors surface as ConfigError."""
        with pytest.raises(ConfigError, match="RPC address"):
            Config.load("client:\n  request_timeout: 5\n", environ={})

    @pytest.mark.parametrize(
        "text",
        [
            "unknown: {}\n",
            "ledger:\n  rpc_adress: http://x\n",
            "ledger: [1, 2]\n",
            "- just\n- a list\n",
            "ledger: {rpc_address: http://x\n",
            "client:\n  request_timeout: soon\n",
            "ledger:\n  chain_id: mixnet\n",
        ],
    )
    def test_rejects_malformed(self, text):
        with pytest.raises(ConfigError):
            Config.load(text, environ={})

    def test_bad_environment_value(self):
        with pytest.raises(ConfigError):
            Config.load(SAMPLE, environ={"MIXPKI_REQUEST_TIMEOUT": "soon"})

    def test_from_dict_does_not_validate(self):
        config = Config.from_dict({"client": {"request_timeout": -1}})
        assert "request_timeout must be positive" in config.validate()
