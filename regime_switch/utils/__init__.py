"""Shared utilities."""

from regime_switch.utils.yaml_loader import YAMLLoader, YAMLLoadError

__all__ = ["YAMLLoadError", "YAMLLoader"]
