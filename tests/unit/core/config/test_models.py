"""Unit tests for controller configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from pipeline_controller.core.config import (
    AppKindConfig,
    ControllerConfig,
    LoggingConfig,
    load_config,
)


@pytest.mark.unit
class TestControllerConfig:
    """Tests for ControllerConfig defaults and validation."""

    def test_defaults(self) -> None:
        """Defaults watch the Flux kinds with two workers."""
        config = ControllerConfig()
        assert config.workers == 2
        assert config.namespace is None
        assert [k.kind for k in config.app_kinds] == ["HelmRelease", "Kustomization"]
        kinds = config.app_resource_kinds
        assert kinds[0].group == "helm.toolkit.fluxcd.io"
        assert kinds[1].plural == "kustomizations"

    @pytest.mark.parametrize(
        "values", [{"workers": 0}, {"resync_period": 0}, {"reconcile_timeout": -1}]
    )
    def test_invalid_values(self, values: dict[str, object]) -> None:
        """Non-positive worker counts and periods are rejected."""
        with pytest.raises(ValidationError):
            ControllerConfig.model_validate(values)

    def test_unknown_keys_rejected(self) -> None:
        """Typos in the config file are errors."""
        with pytest.raises(ValidationError):
            ControllerConfig.model_validate({"wrokers": 3})

    def test_log_level_normalised(self) -> None:
        """Log levels are case-insensitive."""
        assert LoggingConfig(level="debug").level == "DEBUG"
        with pytest.raises(ValidationError, match="Invalid log level"):
            LoggingConfig(level="loud")

    def test_app_kind_resource_kind(self) -> None:
        """App kinds derive their API coordinates."""
        kind = AppKindConfig(api_version="example.com/v1", kind="Widget").resource_kind
        assert (kind.group, kind.version, kind.plural) == ("example.com", "v1", "widgets")


@pytest.mark.unit
class TestFromEnv:
    """Tests for environment overrides."""

    def test_env_overrides_file_values(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Environment variables win over file values."""
        monkeypatch.setenv("PIPELINE_CONTROLLER_NAMESPACE", "flux-system")
        monkeypatch.setenv("PIPELINE_CONTROLLER_WORKERS", "4")
        monkeypatch.setenv("PIPELINE_CONTROLLER_RECONCILE_TIMEOUT", "30")
        monkeypatch.setenv("PIPELINE_CONTROLLER_GITHUB_API_URL", "https://ghe.example.com/api/v3")
        monkeypatch.setenv("PIPELINE_CONTROLLER_LOG_LEVEL", "debug")
        monkeypatch.setenv("PIPELINE_CONTROLLER_LOG_JSON", "true")
        monkeypatch.setenv("PIPELINE_CONTROLLER_KUBE_CONTEXT", "kind-management")

        config = ControllerConfig.from_env({"workers": 1, "kubernetes": {"timeout": 10}})

        assert config.namespace == "flux-system"
        assert config.workers == 4
        assert config.reconcile_timeout == 30.0
        assert config.github.api_url == "https://ghe.example.com/api/v3"
        assert config.logging.level == "DEBUG"
        assert config.logging.json_output is True
        assert config.kubernetes.context == "kind-management"
        assert config.kubernetes.timeout == 10

    def test_base_config_untouched(self) -> None:
        """from_env does not mutate its input."""
        base = {"workers": 3}
        ControllerConfig.from_env(base)
        assert base == {"workers": 3}


@pytest.mark.unit
class TestLoadConfig:
    """Tests for load_config."""

    def test_missing_file_gives_defaults(self, tmp_path: Path) -> None:
        """A missing file is not an error."""
        assert load_config(tmp_path / "absent.yaml") == ControllerConfig()

    def test_loads_yaml(self, tmp_path: Path) -> None:
        """Values are read from the YAML file."""
        path = tmp_path / "config.yaml"
        path.write_text(
            "workers: 5\n"
            "app_kinds:\n"
            "  - api_version: kustomize.toolkit.fluxcd.io/v1\n"
            "    kind: Kustomization\n"
        )
        config = load_config(path)
        assert config.workers == 5
        assert [k.kind for k in config.app_kinds] == ["Kustomization"]

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        """Unparseable YAML is reported with the path."""
        path = tmp_path / "config.yaml"
        path.write_text("workers: [\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            load_config(path)

    def test_not_a_mapping(self, tmp_path: Path) -> None:
        """The document must be a mapping."""
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="expected a mapping"):
            load_config(path)

    def test_to_yaml_round_trips(self) -> None:
        """The YAML dump can be loaded back."""
        config = ControllerConfig(workers=3)
        text = config.to_yaml()
        assert text.startswith("# Pipeline controller configuration")
        assert ControllerConfig.model_validate(yaml.safe_load(text)) == config
