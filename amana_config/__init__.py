"""
amana_config -- single public entrypoint for platform configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``PlatformConfig``; bridges
    in ``amana_config.bridges`` turn it into kernel rule objects.

Architecture position:
    Configuration -- sits above ``amana_kernel`` and below ``amana_batch``.
    The kernel MUST NEVER import from ``amana_config``.

Failure modes:
    - ``FileNotFoundError`` -- the requested file does not exist.
    - ``KeyError`` / ``ValueError`` -- schema or structural validation
      failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``AMANA_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying every scoring and settlement decision back to the exact
    policy that governed it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from amana_config.loader import DEFAULT_CONFIG_PATH, load_platform_config
from amana_config.schema import PlatformConfig

_logger = logging.getLogger("amana_kernel.config")


def get_active_config(path: Path | str | None = None) -> PlatformConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        path: Override YAML file.  Defaults to amana_config/defaults.yaml.
    """
    config = load_platform_config(path)

    _logger.info(
        "AMANA_CONFIG_TRACE",
        extra={
            "trace_type": "AMANA_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path or DEFAULT_CONFIG_PATH),
        },
    )
    return config


__all__ = [
    "PlatformConfig",
    "get_active_config",
]
