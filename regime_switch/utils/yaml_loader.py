"""YAML loader utility with Pydantic integration.

Classes:
    YAMLLoader: Load YAML files into Pydantic models
    YAMLLoadError: Exception raised when YAML loading fails

Example:
    >>> loader = YAMLLoader()
    >>> config = loader.load_file(Path("regime_switch.yml"), RegimeSwitchConfig)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

from regime_switch.models import format_validation_error

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class YAMLLoadError(Exception):
    """Exception raised when YAML loading or validation fails.

    Attributes:
        message: Human-readable error description
        path: Path to the file that failed to load
    """

    def __init__(self, message: str, path: Path) -> None:
        self.message = message
        self.path = path
        super().__init__(f"{message} ({path})")


class YAMLLoader:
    """Load YAML files into Pydantic models with validation."""

    def load_file(self, path: Path, model_cls: type[T]) -> T:
        """Load a single YAML file into a Pydantic model.

        Args:
            path: Path to the YAML file
            model_cls: Pydantic model class to deserialize into

        Returns:
            Validated Pydantic model instance

        Raises:
            FileNotFoundError: If the file doesn't exist
            YAMLLoadError: If YAML parsing or model validation fails
        """
        data = self._read(path)
        try:
            model = model_cls.model_validate(data)
        except ValidationError as e:
            raise YAMLLoadError(f"Validation failed: {format_validation_error(e)}", path) from e
        logger.debug(f"Loaded {model_cls.__name__} from {path}")
        return model

    def validate_yaml(self, path: Path, model_cls: type[T]) -> list[str]:
        """Validate a YAML file, returning error messages instead of raising."""
        if not path.exists():
            return [f"File not found: {path}"]
        try:
            model_cls.model_validate(self._read(path))
        except YAMLLoadError as e:
            return [e.message]
        except ValidationError as e:
            return [
                f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
                for error in e.errors()
            ]
        return []

    @staticmethod
    def _read(path: Path) -> dict[str, Any]:
        if not path.exists():
            raise FileNotFoundError(f"YAML file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise YAMLLoadError(f"YAML syntax error: {e}", path) from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise YAMLLoadError(f"Expected a mapping at top level, got {type(data).__name__}", path)
        return data


__all__ = ["YAMLLoadError", "YAMLLoader"]
