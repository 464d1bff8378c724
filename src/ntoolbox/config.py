"""
Runtime settings.

Defaults match the stock device and the timings the vendor updater uses.
``ToolboxSettings.from_env()`` applies ``NTOOLBOX_*`` overrides; CLI options
are applied on top of that by the command layer.

| Variable                     | Field             | Example  |
|------------------------------|-------------------|----------|
| NTOOLBOX_VENDOR_ID           | vendor_id         | 0x0416   |
| NTOOLBOX_PRODUCT_ID          | product_id        | 0x5020   |
| NTOOLBOX_TIMEOUT             | timeout           | 2.5      |
| NTOOLBOX_CHUNK_SIZE          | chunk_size        | 1024     |
| NTOOLBOX_POLL_INTERVAL       | poll_interval     | 0.5      |
| NTOOLBOX_RECONNECT_TIMEOUT   | timings.reconnect_timeout | 10 |
"""

import os
from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from .errors import FormatError

DEFAULT_VENDOR_ID = 0x0416
DEFAULT_PRODUCT_ID = 0x5020
HID_REPORT_SIZE = 64

ENV_PREFIX = "NTOOLBOX_"


@dataclass(frozen=True)
class UpdateTimings:
    """Delays (seconds) around the boot-mode switch and firmware upload."""
    after_dataflash_write: float = 0.5
    after_restart: float = 3.0
    reconnect_poll: float = 0.1
    reconnect_timeout: float = 5.0
    after_upload: float = 0.5

    @classmethod
    def immediate(cls) -> "UpdateTimings":
        """No delays and a single reconnect probe. Used by tests and dry runs."""
        return cls(0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass(frozen=True)
class ToolboxSettings:
    vendor_id: int = DEFAULT_VENDOR_ID
    product_id: int = DEFAULT_PRODUCT_ID
    timeout: float = 2.0
    chunk_size: int = 1024
    poll_interval: float = 1.0
    timings: UpdateTimings = field(default_factory=UpdateTimings)

    def __post_init__(self):
        if self.chunk_size <= 0 or self.chunk_size % HID_REPORT_SIZE:
            raise FormatError(
                f"chunk_size must be a positive multiple of {HID_REPORT_SIZE}, got {self.chunk_size}"
            )
        if self.timeout <= 0:
            raise FormatError(f"timeout must be positive, got {self.timeout}")
        if self.poll_interval <= 0:
            raise FormatError(f"poll_interval must be positive, got {self.poll_interval}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ToolboxSettings":
        """
        Build settings from defaults plus ``NTOOLBOX_*`` variables.

        Raises:
            FormatError: If a variable is set to something unparsable
        """
        env = os.environ if environ is None else environ
        base = cls()
        timings = base.timings

        reconnect = _env_value(env, "RECONNECT_TIMEOUT", float)
        if reconnect is not None:
            timings = replace(timings, reconnect_timeout=reconnect)

        overrides = {
            "vendor_id": _env_value(env, "VENDOR_ID", _parse_int),
            "product_id": _env_value(env, "PRODUCT_ID", _parse_int),
            "timeout": _env_value(env, "TIMEOUT", float),
            "chunk_size": _env_value(env, "CHUNK_SIZE", _parse_int),
            "poll_interval": _env_value(env, "POLL_INTERVAL", float),
        }
        return replace(
            base,
            timings=timings,
            **{k: v for k, v in overrides.items() if v is not None},
        )

    def with_overrides(self, **values) -> "ToolboxSettings":
        """Copy with every non-None keyword applied."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})


def _parse_int(text: str) -> int:
    """Accepts decimal or 0x-prefixed hex."""
    return int(text, 0)


def _env_value(env: Mapping[str, str], name: str, parse):
    raw = env.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    try:
        return parse(raw.strip())
    except ValueError as exc:
        raise FormatError(f"Invalid {ENV_PREFIX}{name}={raw!r}: {exc}") from exc
