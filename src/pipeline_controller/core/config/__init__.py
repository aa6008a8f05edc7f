"""Configuration management with Pydantic validation."""

from pipeline_controller.core.config.models import (
    AppKindConfig,
    ControllerConfig,
    LoggingConfig,
    load_config,
)

__all__ = [
    "AppKindConfig",
    "ControllerConfig",
    "LoggingConfig",
    "load_config",
]
