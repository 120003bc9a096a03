"""Market regime detection and regime-transition management."""

__version__ = "0.1.0"
