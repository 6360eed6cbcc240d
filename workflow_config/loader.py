"""
Configuration Loader (``workflow_config.loader``).

Responsibility
--------------
Reads the YAML configuration file, applies environment overrides and
parses the result into ``workflow_config.schema`` dataclasses.  Runtime
code does not call this directly; the single entry point is
``workflow_config.get_active_config()``.

Environment overrides
---------------------
========================== ===============================================
``WORKFLOW_CONFIG_FILE``   YAML file to read when no path is given
``WORKFLOW_DATABASE_URL``  ``database_url``
``N8N_API_URL``            ``integration.endpoint_url``
``N8N_API_KEY``            ``integration.api_key``
``WORKFLOW_SIGNING_SECRET`` ``integration.signing_secret``
``WORKFLOW_MAX_ATTEMPTS``  ``retry.max_attempts``
========================== ===============================================

An override set to the empty string clears the value, which for the
endpoint URL or API key leaves the integration unconfigured.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ConfigurationError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from workflow_config.schema import IntegrationConfig, RetryPolicy, WorkflowConfig
from workflow_kernel.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"

ENV_CONFIG_FILE = "WORKFLOW_CONFIG_FILE"
ENV_DATABASE_URL = "WORKFLOW_DATABASE_URL"
ENV_API_URL = "N8N_API_URL"
ENV_API_KEY = "N8N_API_KEY"
ENV_SIGNING_SECRET = "WORKFLOW_SIGNING_SECRET"
ENV_MAX_ATTEMPTS = "WORKFLOW_MAX_ATTEMPTS"

# env var -> (section, key); section None means top level
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    ENV_DATABASE_URL: (None, "database_url"),
    ENV_API_URL: ("integration", "endpoint_url"),
    ENV_API_KEY: ("integration", "api_key"),
    ENV_SIGNING_SECRET: ("integration", "signing_secret"),
    ENV_MAX_ATTEMPTS: ("retry", "max_attempts"),
}

_TOP_LEVEL_KEYS = frozenset({
    "integration", "retry", "database_url", "request_timeout_seconds", "worker_count",
})
_INTEGRATION_KEYS = frozenset({
    "endpoint_url", "api_key", "signing_secret", "request_timeout_seconds",
})
_RETRY_KEYS = frozenset({
    "max_attempts", "base_delay_seconds", "multiplier", "max_delay_seconds",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigurationError(str(path), "top level must be a mapping")
    return data


def apply_environment(
    data: dict[str, Any], environ: Mapping[str, str],
) -> dict[str, Any]:
    """Return a copy of ``data`` with environment overrides applied."""
    merged = copy.deepcopy(data)
    for env_name, (section, key) in _ENV_OVERRIDES.items():
        if env_name not in environ:
            continue
        raw = environ[env_name].strip()
        value: Any = raw or None
        if env_name == ENV_MAX_ATTEMPTS and value is not None:
            value = _parse_int(env_name, value)
        if section is None:
            merged[key] = value
        else:
            merged.setdefault(section, {})
            if merged[section] is None:
                merged[section] = {}
            merged[section][key] = value
    return merged


def parse_config(data: dict[str, Any]) -> WorkflowConfig:
    """Parse a WorkflowConfig from a dict (YAML shape)."""
    _reject_unknown("", data, _TOP_LEVEL_KEYS)
    integration_data = data.get("integration") or {}
    retry_data = data.get("retry") or {}
    _reject_unknown("integration.", integration_data, _INTEGRATION_KEYS)
    _reject_unknown("retry.", retry_data, _RETRY_KEYS)

    integration = IntegrationConfig(
        endpoint_url=integration_data.get("endpoint_url") or None,
        api_key=integration_data.get("api_key") or None,
        signing_secret=integration_data.get("signing_secret") or None,
        request_timeout_seconds=_parse_float(
            "integration.request_timeout_seconds",
            integration_data.get("request_timeout_seconds", 10.0),
        ),
    )
    retry = RetryPolicy(
        max_attempts=_parse_int("retry.max_attempts", retry_data.get("max_attempts", 3)),
        base_delay_seconds=_parse_float(
            "retry.base_delay_seconds", retry_data.get("base_delay_seconds", 0.5)
        ),
        multiplier=_parse_float("retry.multiplier", retry_data.get("multiplier", 2.0)),
        max_delay_seconds=_parse_float(
            "retry.max_delay_seconds", retry_data.get("max_delay_seconds", 30.0)
        ),
    )

    kwargs: dict[str, Any] = {"integration": integration, "retry": retry}
    if data.get("database_url"):
        kwargs["database_url"] = str(data["database_url"])
    if "request_timeout_seconds" in data:
        kwargs["request_timeout_seconds"] = _parse_float(
            "request_timeout_seconds", data["request_timeout_seconds"]
        )
    if "worker_count" in data:
        kwargs["worker_count"] = _parse_int("worker_count", data["worker_count"])
    return WorkflowConfig(**kwargs)


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowConfig:
    """
    Load configuration from YAML plus environment.

    Args:
        path: YAML file.  Defaults to ``$WORKFLOW_CONFIG_FILE`` or the
            packaged ``default.yaml``.
        environ: Environment mapping.  Defaults to ``os.environ``.

    Raises:
        ConfigurationError: for unknown keys or invalid values.
    """
    env = os.environ if environ is None else environ
    data = apply_environment(load_yaml_file(resolve_config_path(path, env)), env)
    return parse_config(data)


def resolve_config_path(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> Path:
    """The YAML file load_config() reads for these arguments."""
    env = os.environ if environ is None else environ
    if path is None:
        path = env.get(ENV_CONFIG_FILE) or DEFAULT_CONFIG_PATH
    return Path(path)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _reject_unknown(prefix: str, data: Any, allowed: frozenset[str]) -> None:
    if not isinstance(data, dict):
        raise ConfigurationError(prefix.rstrip(".") or "<root>", "must be a mapping")
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ConfigurationError(f"{prefix}{unknown[0]}", "unknown configuration key")


def _parse_int(field_name: str, value: Any) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(field_name, f"expected an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(field_name, f"expected an integer, got {value!r}") from None


def _parse_float(field_name: str, value: Any) -> float:
    if isinstance(value, bool):
        raise ConfigurationError(field_name, f"expected a number, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(field_name, f"expected a number, got {value!r}") from None
