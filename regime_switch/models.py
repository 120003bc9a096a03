"""Base Pydantic model and validated partial updates for component configs.

Classes:
    StrictModel: Base model with extra='forbid' for configs and snapshots

Functions:
    apply_partial_update: Merge a dict of changes into a config model
    format_validation_error: Render a ValidationError as "loc: msg; ..."
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from regime_switch.errors import ConfigurationError

M = TypeVar("M", bound=BaseModel)


class StrictModel(BaseModel):
    """Base model for configuration and persisted state.

    Uses extra='forbid' so typos in YAML files, API payloads and partial
    updates fail loudly instead of being ignored.
    """

    model_config = ConfigDict(extra="forbid")


def format_validation_error(error: ValidationError) -> str:
    """Format pydantic errors as "loc: msg" joined by semicolons."""
    messages = []
    for item in error.errors():
        loc = ".".join(str(part) for part in item["loc"])
        messages.append(f"{loc}: {item['msg']}" if loc else item["msg"])
    return "; ".join(messages)


def apply_partial_update(model: M, updates: Mapping[str, Any]) -> M:
    """Return a copy of `model` with `updates` applied and re-validated.

    Nested models accept nested mappings. Unknown keys are rejected.

    Raises:
        ConfigurationError: On unknown keys or values failing validation
    """
    unknown = sorted(set(updates) - set(type(model).model_fields))
    if unknown:
        raise ConfigurationError(
            f"Unknown configuration keys for {type(model).__name__}: {', '.join(unknown)}",
            operation="apply_partial_update",
        )

    data = model.model_dump()
    for key, value in updates.items():
        current = getattr(model, key)
        if isinstance(current, BaseModel) and isinstance(value, Mapping):
            data[key] = apply_partial_update(current, value).model_dump()
        else:
            data[key] = value

    try:
        return type(model).model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration update: {format_validation_error(e)}",
            operation="apply_partial_update",
        ) from e


__all__ = ["StrictModel", "apply_partial_update", "format_validation_error"]
