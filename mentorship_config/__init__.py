"""
mentorship_config -- single public entrypoint for workflow configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains settings.
    It loads a YAML configuration set (the packaged default, an explicit
    path, or the file named by ``MENTORSHIP_CONFIG_PATH``), validates it and
    returns a frozen ``WorkflowConfig``.

Failure modes:
    - ``FileNotFoundError`` -- the configured path does not exist.
    - ``ConfigurationError`` -- a value failed validation.

Audit relevance:
    Every successful call emits a ``WORKFLOW_CONFIG_TRACE`` log entry with
    the config id and version in force.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from mentorship_config.loader import load_config, parse_config
from mentorship_config.schema import (
    GatewaySettings,
    ProjectDefaults,
    RetryPolicy,
    WorkflowConfig,
)

_logger = logging.getLogger("mentorship_kernel.config")

CONFIG_PATH_ENV = "MENTORSHIP_CONFIG_PATH"

_DEFAULT_CONFIG = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> WorkflowConfig:
    """Load and validate the active workflow configuration.

    Resolution order: ``config_path`` argument, then the
    ``MENTORSHIP_CONFIG_PATH`` environment variable, then the packaged
    ``sets/default.yaml``.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG
    path = Path(config_path)

    config = load_config(path)

    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "source": str(path),
        },
    )
    return config


__all__ = [
    "CONFIG_PATH_ENV",
    "GatewaySettings",
    "ProjectDefaults",
    "RetryPolicy",
    "WorkflowConfig",
    "get_active_config",
    "parse_config",
]
