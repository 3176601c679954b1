# src/sluice/plugins/config_base.py
"""Base class for typed source-plugin options.

Plugins receive their section of `sources` from the settings file as a plain
dict and validate it here, so a bad option fails before any stage runs.

Example usage:
    class GithubOptions(SourceOptions):
        connection_id: int
        name: str

    options = GithubOptions.from_dict(settings.sources["github"])
"""

from collections.abc import Mapping
from typing import Any, Self

from pydantic import BaseModel, ValidationError


class PluginConfigError(Exception):
    """Raised when source-plugin options are invalid."""

    pass


class SourceOptions(BaseModel):
    """Frozen, strict plugin options. Unknown keys are rejected."""

    model_config = {"extra": "forbid", "frozen": True}

    @classmethod
    def from_dict(cls, config: Mapping[str, Any]) -> Self:
        """Create options from a mapping with a clear error on validation failure.

        Raises:
            PluginConfigError: If the options are invalid
        """
        if not isinstance(config, Mapping):
            raise PluginConfigError(f"Invalid options for {cls.__name__}: expected a mapping, got {type(config).__name__}.")
        try:
            return cls.model_validate(dict(config))
        except ValidationError as e:
            raise PluginConfigError(f"Invalid options for {cls.__name__}: {e}") from e
