"""Tests for SourceOptions."""

import pytest

from sluice.plugins.config_base import PluginConfigError, SourceOptions


class _Options(SourceOptions):
    owner: str
    retries: int = 1


class TestSourceOptions:
    def test_valid(self) -> None:
        options = _Options.from_dict({"owner": "octo"})

        assert options.owner == "octo"
        assert options.retries == 1

    def test_frozen(self) -> None:
        from pydantic import ValidationError

        options = _Options.from_dict({"owner": "octo"})

        with pytest.raises(ValidationError):
            options.owner = "other"  # type: ignore[misc]

    def test_unknown_key_rejected(self) -> None:
        with pytest.raises(PluginConfigError, match="Invalid options for _Options"):
            _Options.from_dict({"owner": "octo", "typo": 1})

    def test_missing_key_rejected(self) -> None:
        with pytest.raises(PluginConfigError, match="owner"):
            _Options.from_dict({})

    def test_non_mapping_rejected(self) -> None:
        with pytest.raises(PluginConfigError, match="expected a mapping, got list"):
            _Options.from_dict(["owner"])  # type: ignore[arg-type]
