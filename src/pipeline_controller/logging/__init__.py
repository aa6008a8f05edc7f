"""Logging configuration for pipeline_controller."""

from pipeline_controller.logging.config import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
