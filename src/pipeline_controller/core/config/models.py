"""Controller configuration models.

Configuration is read from an optional YAML file and then overridden by
``PIPELINE_CONTROLLER_*`` environment variables, so the same image can be
configured from a mounted file, from the Deployment's env, or both.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from pipeline_controller.integrations.github.config import GitHubConfig
from pipeline_controller.integrations.kubernetes.config import KubernetesConfig
from pipeline_controller.integrations.kubernetes.models.base import ResourceKind

CONFIG_FILE = Path("/etc/pipeline-controller/config.yaml")
ENV_PREFIX = "PIPELINE_CONTROLLER_"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class AppKindConfig(BaseModel):
    """An application kind to watch for readiness changes."""

    model_config = ConfigDict(extra="forbid")

    api_version: str
    kind: str

    @property
    def resource_kind(self) -> ResourceKind:
        return ResourceKind.from_api_version(self.api_version, self.kind)


def _default_app_kinds() -> list[AppKindConfig]:
    return [
        AppKindConfig(api_version="helm.toolkit.fluxcd.io/v2beta1", kind="HelmRelease"),
        AppKindConfig(api_version="kustomize.toolkit.fluxcd.io/v1", kind="Kustomization"),
    ]


class LoggingConfig(BaseModel):
    """Log output settings."""

    model_config = ConfigDict(extra="forbid")

    level: str = "INFO"
    json_output: bool = False
    log_file: str | None = None

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalise and validate the log level."""
        level = v.upper()
        if level not in VALID_LOG_LEVELS:
            valid = ", ".join(VALID_LOG_LEVELS)
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid}")
        return level


class ControllerConfig(BaseModel):
    """Complete controller configuration."""

    model_config = ConfigDict(extra="forbid")

    namespace: str | None = Field(
        default=None, description="Only reconcile pipelines in this namespace"
    )
    workers: int = 2
    resync_period: float = 300.0
    reconcile_timeout: float = 120.0
    workdir: str | None = Field(default=None, description="Parent directory for git clones")
    app_kinds: list[AppKindConfig] = Field(default_factory=_default_app_kinds)
    kubernetes: KubernetesConfig = Field(default_factory=KubernetesConfig)
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("workers")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Validate there is at least one worker."""
        if v < 1:
            raise ValueError("workers must be at least 1")
        return v

    @field_validator("resync_period", "reconcile_timeout")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        """Validate periods are positive."""
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @classmethod
    def from_env(cls, base_config: dict[str, Any] | None = None) -> ControllerConfig:
        """Create configuration with environment variable overrides.

        Environment variables take precedence over base_config values.

        Supported environment variables:
            PIPELINE_CONTROLLER_NAMESPACE: Namespace to restrict reconciliation to
            PIPELINE_CONTROLLER_WORKERS: Number of worker threads
            PIPELINE_CONTROLLER_RESYNC_PERIOD: Seconds between full resyncs
            PIPELINE_CONTROLLER_RECONCILE_TIMEOUT: Deadline of one pass in seconds
            PIPELINE_CONTROLLER_WORKDIR: Parent directory for git clones
            PIPELINE_CONTROLLER_KUBECONFIG: Kubeconfig path
            PIPELINE_CONTROLLER_KUBE_CONTEXT: Kubeconfig context
            PIPELINE_CONTROLLER_GITHUB_API_URL: GitHub API base override
            PIPELINE_CONTROLLER_LOG_LEVEL: Log level
            PIPELINE_CONTROLLER_LOG_JSON: Emit JSON logs (true/false)
        """
        config_dict = base_config.copy() if base_config else {}
        kubernetes: dict[str, Any] = dict(config_dict.get("kubernetes") or {})
        github: dict[str, Any] = dict(config_dict.get("github") or {})
        logging: dict[str, Any] = dict(config_dict.get("logging") or {})

        if namespace := os.environ.get(f"{ENV_PREFIX}NAMESPACE"):
            config_dict["namespace"] = namespace
        if workers := os.environ.get(f"{ENV_PREFIX}WORKERS"):
            config_dict["workers"] = int(workers)
        if resync_period := os.environ.get(f"{ENV_PREFIX}RESYNC_PERIOD"):
            config_dict["resync_period"] = float(resync_period)
        if reconcile_timeout := os.environ.get(f"{ENV_PREFIX}RECONCILE_TIMEOUT"):
            config_dict["reconcile_timeout"] = float(reconcile_timeout)
        if workdir := os.environ.get(f"{ENV_PREFIX}WORKDIR"):
            config_dict["workdir"] = workdir

        if kubeconfig := os.environ.get(f"{ENV_PREFIX}KUBECONFIG"):
            kubernetes["kubeconfig"] = kubeconfig
        if context := os.environ.get(f"{ENV_PREFIX}KUBE_CONTEXT"):
            kubernetes["context"] = context

        if api_url := os.environ.get(f"{ENV_PREFIX}GITHUB_API_URL"):
            github["api_url"] = api_url

        if level := os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
            logging["level"] = level
        if json_output := os.environ.get(f"{ENV_PREFIX}LOG_JSON"):
            logging["json_output"] = json_output.lower() in ("1", "true", "yes")

        config_dict["kubernetes"] = kubernetes
        config_dict["github"] = github
        config_dict["logging"] = logging
        return cls.model_validate(config_dict)

    @property
    def app_resource_kinds(self) -> list[ResourceKind]:
        return [k.resource_kind for k in self.app_kinds]

    def to_yaml(self) -> str:
        """Serialize to YAML with a comment header."""
        header = "# Pipeline controller configuration\n"
        return header + yaml.safe_dump(self.model_dump(mode="json"), sort_keys=False)


def load_config(path: Path | None = None) -> ControllerConfig:
    """Load configuration from YAML, then apply environment overrides.

    A missing file yields the defaults.

    Raises:
        ValueError: If the file is not valid YAML or not a mapping.
        pydantic.ValidationError: If a value is invalid.
    """
    config_path = path or CONFIG_FILE
    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            loaded = yaml.safe_load(config_path.read_text())
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in {config_path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ValueError(f"Invalid configuration in {config_path}: expected a mapping")
        raw = loaded or {}
    return ControllerConfig.from_env(raw)
