"""
Configuration Loader (``mentorship_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``mentorship_config.schema`` dataclasses, validating every value on the
way.  Runtime callers go through ``mentorship_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value  -> ``ConfigurationError`` naming the offending key.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from mentorship_config.schema import (
    GatewaySettings,
    ProjectDefaults,
    RetryPolicy,
    WorkflowConfig,
)
from mentorship_kernel.domain.currency import CurrencyRegistry
from mentorship_kernel.domain.project import ProjectStatus
from mentorship_kernel.exceptions import ConfigurationError


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(key, "must be a mapping")
    return section


def _positive_int(section: dict[str, Any], key: str, path: str, default: int, minimum: int = 1) -> int:
    value = section.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
        raise ConfigurationError(path, f"must be an integer >= {minimum}, got {value!r}")
    return value


def _positive_float(section: dict[str, Any], key: str, path: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(path, f"must be a positive number, got {value!r}")
    return float(value)


def parse_retry(data: dict[str, Any]) -> RetryPolicy:
    defaults = RetryPolicy()
    policy = RetryPolicy(
        max_attempts=_positive_int(data, "max_attempts", "retry.max_attempts", defaults.max_attempts),
        base_delay_seconds=_positive_float(
            data, "base_delay_seconds", "retry.base_delay_seconds", defaults.base_delay_seconds
        ),
        max_delay_seconds=_positive_float(
            data, "max_delay_seconds", "retry.max_delay_seconds", defaults.max_delay_seconds
        ),
    )
    if policy.max_delay_seconds < policy.base_delay_seconds:
        raise ConfigurationError("retry.max_delay_seconds", "must be >= base_delay_seconds")
    return policy


def parse_gateway(data: dict[str, Any]) -> GatewaySettings:
    defaults = GatewaySettings()
    base_url = data.get("base_url", defaults.base_url)
    if not isinstance(base_url, str) or not base_url.startswith(("http://", "https://")):
        raise ConfigurationError("gateway.base_url", f"must be an http(s) URL, got {base_url!r}")
    return GatewaySettings(
        base_url=base_url.rstrip("/"),
        timeout_seconds=_positive_float(
            data, "timeout_seconds", "gateway.timeout_seconds", defaults.timeout_seconds
        ),
        transient_retries=_positive_int(
            data, "transient_retries", "gateway.transient_retries",
            defaults.transient_retries, minimum=0,
        ),
        callback_url=data.get("callback_url"),
    )


def parse_project_defaults(data: dict[str, Any]) -> ProjectDefaults:
    defaults = ProjectDefaults()
    currency = data.get("currency", defaults.currency)
    if not isinstance(currency, str) or not CurrencyRegistry.is_valid(currency):
        raise ConfigurationError("project_defaults.currency", f"unsupported currency {currency!r}")

    prefix = data.get("project_number_prefix", defaults.project_number_prefix)
    if not isinstance(prefix, str) or not prefix.isalnum():
        raise ConfigurationError(
            "project_defaults.project_number_prefix", f"must be alphanumeric, got {prefix!r}"
        )

    fundable = defaults.fundable_statuses
    if "fundable_statuses" in data:
        try:
            fundable = frozenset(ProjectStatus(s) for s in data["fundable_statuses"])
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("project_defaults.fundable_statuses", str(exc)) from exc

    return ProjectDefaults(
        max_revisions=_positive_int(
            data, "max_revisions", "project_defaults.max_revisions",
            defaults.max_revisions, minimum=0,
        ),
        currency=currency.upper(),
        project_number_prefix=prefix,
        fundable_statuses=fundable,
    )


def parse_config(data: dict[str, Any]) -> WorkflowConfig:
    """Parse a full configuration mapping into a WorkflowConfig."""
    return WorkflowConfig(
        config_id=str(data.get("config_id", "default")),
        version=_positive_int(data, "version", "version", 1),
        retry=parse_retry(_section(data, "retry")),
        gateway=parse_gateway(_section(data, "gateway")),
        project_defaults=parse_project_defaults(_section(data, "project_defaults")),
    )


def load_config(path: Path) -> WorkflowConfig:
    return parse_config(load_yaml_file(path))
