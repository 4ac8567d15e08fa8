"""
Configuration management for reliudp.

Timing and capacity settings for the delivery service. Defaults match the
reference behaviour (1 s retransmission timeout, 5 ms send interval) and can
be overridden from ``RELIUDP_*`` environment variables.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Mapping, Optional


class ConfigError(Exception):
    """Raised when configuration operations fail."""
    pass


ENV_PREFIX = "RELIUDP_"


@dataclass(frozen=True)
class ServiceConfig:
    """
    Settings for a ReliableDeliveryService.

    Fields:
        retransmit_timeout: Seconds before an unacknowledged packet is resent
        send_interval: Seconds the send loop sleeps between cycles
        receive_yield: Seconds the receive loop yields between receives
        receive_timeout: Seconds a real socket receive may block
        buffer_size: Largest datagram accepted
        max_outbound: Outbound queue capacity (None = unbounded)
        max_unacked: Unacknowledged packet capacity (None = unbounded)
    """
    retransmit_timeout: float = 1.0
    send_interval: float = 0.005
    receive_yield: float = 0.001
    receive_timeout: float = 0.5
    buffer_size: int = 65535
    max_outbound: Optional[int] = None
    max_unacked: Optional[int] = None

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check that every setting is usable.

        Raises:
            ConfigError: If a setting is out of range
        """
        if self.retransmit_timeout <= 0:
            raise ConfigError("retransmit_timeout must be positive")
        if self.send_interval <= 0:
            raise ConfigError("send_interval must be positive")
        if self.receive_yield < 0:
            raise ConfigError("receive_yield must not be negative")
        if self.receive_timeout <= 0:
            raise ConfigError("receive_timeout must be positive")
        if self.buffer_size <= 0:
            raise ConfigError("buffer_size must be positive")
        for name in ("max_outbound", "max_unacked"):
            limit = getattr(self, name)
            if limit is not None and limit <= 0:
                raise ConfigError(f"{name} must be positive or unset")

    def with_overrides(self, **overrides) -> 'ServiceConfig':
        """
        Copy the config, replacing the given fields.

        None values are ignored so CLI options can be passed straight through.
        """
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ServiceConfig':
        """
        Build a config from environment variables.

        ``RELIUDP_RETRANSMIT_TIMEOUT=0.5`` overrides ``retransmit_timeout`` and so
        on. Capacity limits accept ``none`` to mean unbounded.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            ServiceConfig with overrides applied

        Raises:
            ConfigError: If a variable cannot be parsed
        """
        if environ is None:
            environ = os.environ

        values = {}
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            try:
                if field.name in ("max_outbound", "max_unacked"):
                    values[field.name] = None if raw.lower() == "none" else int(raw)
                elif field.name == "buffer_size":
                    values[field.name] = int(raw)
                else:
                    values[field.name] = float(raw)
            except ValueError:
                raise ConfigError(f"Invalid value for {ENV_PREFIX}{field.name.upper()}: {raw!r}")

        return cls(**values)
