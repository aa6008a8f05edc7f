"""Progressive-delivery controller for Pipeline resources."""

from pipeline_controller.__version__ import __version__

__all__ = ["__version__"]
