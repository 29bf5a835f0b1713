"""Configuration management for mixpki."""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional
import os

import yaml

from mixpki.errors import ConfigError


class LogLevel(Enum):
    """Log levels accepted in configuration."""
    ERROR = "ERROR"
    WARNING = "WARNING"
    NOTICE = "NOTICE"
    INFO = "INFO"
    DEBUG = "DEBUG"


DEFAULT_LOG_LEVEL = LogLevel.NOTICE


@dataclass
class LoggingConfig:
    """Logging configuration settings."""

    disable: bool = False
    file: Optional[str] = None  # stderr when unset
    level: str = DEFAULT_LOG_LEVEL.value

    def validate(self) -> List[str]:
        errors = []
        if not self.level:
            self.level = DEFAULT_LOG_LEVEL.value
        self.level = self.level.upper()
        if self.level not in LogLevel.__members__:
            errors.append(f"logging level {self.level!r} is invalid")
        if not self.disable and self.file and not os.path.isabs(self.file):
            errors.append("log file path must be absolute")
        return errors


@dataclass
class EpochConfig:
    """Epoch timing of the directory ledger."""

    period: timedelta = timedelta(minutes=20)
    heights_per_epoch: int = 5

    def validate(self) -> List[str]:
        errors = []
        if self.period <= timedelta(0):
            errors.append("epoch period must be positive")
        if self.heights_per_epoch <= 0:
            errors.append("heights_per_epoch must be positive")
        return errors


@dataclass
class LedgerConfig:
    """Ledger connector settings, consumed by ``RPCLedgerConnector.from_config``.

    Header-chain trust (chain id, trusted height and hash, witnesses) is
    configured on the light-client proxy, not here.
    """

    rpc_address: str = ""
    request_timeout: float = 10.0
    inclusion_poll_interval: float = 1.0
    inclusion_timeout: float = 60.0
    require_proof: bool = True

    def validate(self) -> List[str]:
        errors = []
        if not self.rpc_address:
            errors.append("RPC address is missing")
        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")
        if self.inclusion_poll_interval <= 0:
            errors.append("inclusion_poll_interval must be positive")
        if self.inclusion_timeout <= 0:
            errors.append("inclusion_timeout must be positive")
        return errors


@dataclass
class ClientConfig:
    """Directory client settings."""

    request_timeout: float = 30.0
    initial_max_pki_retrieval_delay: float = 30.0
    max_retrieval_attempts: int = 10
    retry_backoff: float = 1.0
    retry_backoff_max: float = 30.0

    def validate(self) -> List[str]:
        errors = []
        if self.request_timeout <= 0:
            errors.append("request_timeout must be positive")
        if self.initial_max_pki_retrieval_delay <= 0:
            errors.append("initial_max_pki_retrieval_delay must be positive")
        if self.max_retrieval_attempts <= 0:
            errors.append("max_retrieval_attempts must be positive")
        if self.retry_backoff < 0 or self.retry_backoff_max < self.retry_backoff:
            errors.append("retry backoff must satisfy 0 <= retry_backoff <= retry_backoff_max")
        return errors


_SECTIONS = {
    "logging": LoggingConfig,
    "epoch": EpochConfig,
    "ledger": LedgerConfig,
    "client": ClientConfig,
}

# environment variable -> (section, key)
_ENVIRONMENT = {
    "MIXPKI_LOG_LEVEL": ("logging", "level"),
    "MIXPKI_LOG_FILE": ("logging", "file"),
    "MIXPKI_RPC_ADDRESS": ("ledger", "rpc_address"),
    "MIXPKI_REQUEST_TIMEOUT": ("client", "request_timeout"),
}


def _coerce(current: Any, value: Any, name: str) -> Any:
    if isinstance(current, timedelta):
        if isinstance(value, timedelta):
            return value
        return timedelta(seconds=float(value))
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    if isinstance(current, float):
        return float(value)
    if isinstance(current, int):
        return int(value)
    if value is None:
        return None
    return str(value)


def _build_section(cls: type, values: Mapping[str, Any], section: str) -> Any:
    instance = cls()
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"config: undecoded keys in section {section!r}: {unknown}")
    for key, value in values.items():
        try:
            setattr(instance, key, _coerce(getattr(instance, key), value, key))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"config: {section}.{key}: {e}") from e
    return instance


class Config:
    """
    Top level configuration.

    Values come from, in order of precedence: environment variables
    (``MIXPKI_*``), the loaded file or mapping, then defaults.
    """

    def __init__(
        self,
        logging: Optional[LoggingConfig] = None,
        epoch: Optional[EpochConfig] = None,
        ledger: Optional[LedgerConfig] = None,
        client: Optional[ClientConfig] = None,
    ) -> None:
        self.logging = logging or LoggingConfig()
        self.epoch = epoch or EpochConfig()
        self.ledger = ledger or LedgerConfig()
        self.client = client or ClientConfig()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Config:
        """
        Build a configuration from a nested mapping.

        Args:
            data: Mapping of section name to section values.

        Returns:
            Configuration object. Not yet validated.

        Raises:
            ConfigError: On unknown sections or keys, or uncoercible values.
        """
        unknown = sorted(set(data) - set(_SECTIONS))
        if unknown:
            raise ConfigError(f"config: undecoded sections: {unknown}")
        sections: Dict[str, Any] = {}
        for name, section_cls in _SECTIONS.items():
            values = data.get(name) or {}
            if not isinstance(values, Mapping):
                raise ConfigError(f"config: section {name!r} must be a mapping")
            sections[name] = _build_section(section_cls, values, name)
        return cls(**sections)

    @classmethod
    def load(cls, text: str, environ: Optional[Mapping[str, str]] = None) -> Config:
        """
        Parse and validate a YAML document.

        Args:
            text: YAML body.
            environ: Environment to read overrides from. Defaults to
                ``os.environ``.

        Raises:
            ConfigError: If the document is invalid.
        """
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"config: {e}") from e
        if not isinstance(data, Mapping):
            raise ConfigError("config: top level must be a mapping")
        config = cls.from_dict(data)
        config.apply_environment(os.environ if environ is None else environ)
        errors = config.validate()
        if errors:
            raise ConfigError("config: " + "; ".join(errors))
        return config

    @classmethod
    def load_file(cls, path: str | Path, environ: Optional[Mapping[str, str]] = None) -> Config:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"config: cannot read {path}: {e}") from e
        return cls.load(text, environ)

    def apply_environment(self, environ: Mapping[str, str]) -> None:
        """Override values from ``MIXPKI_*`` environment variables."""
        for env_var, (section, key) in _ENVIRONMENT.items():
            if env_var not in environ:
                continue
            target = getattr(self, section)
            try:
                setattr(target, key, _coerce(getattr(target, key), environ[env_var], key))
            except (TypeError, ValueError) as e:
                raise ConfigError(f"config: {env_var}: {e}") from e

    def validate(self) -> List[str]:
        """
        Validate current configuration.

        Returns:
            List of validation errors. Empty if valid.
        """
        errors: List[str] = []
        errors.extend(self.logging.validate())
        errors.extend(self.epoch.validate())
        errors.extend(self.ledger.validate())
        errors.extend(self.client.validate())
        return errors
