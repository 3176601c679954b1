# src/sluice/plugins/manager.py
"""Plugin manager for discovery, registration, and per-source hook calls.

Uses pluggy for hook-based plugin registration. Every plugin carries a
`name`; hooks are called on exactly one plugin at a time, because the stages
and params of two data sources never mix in one pipeline run.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import pluggy

from sluice.plugins.hookspecs import PROJECT_NAME, SluiceSourceSpec
from sluice.plugins.registry import SubTaskRegistry

if TYPE_CHECKING:
    from sqlalchemy import MetaData

    from sluice.contracts.subtask import TaskSetup
    from sluice.core.rate_limit import RateLimitRegistry


class PluginManager:
    """Manages plugin discovery, registration, and lookup.

    Usage:
        manager = PluginManager()
        manager.register_builtin_plugins()

        registry = manager.build_registry("github")
        setup = manager.prepare_task("github", options, rate_limits)
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(SluiceSourceSpec)

    def register_builtin_plugins(self) -> None:
        """Register the data sources shipped with sluice."""
        from sluice.plugins.github.plugin import GithubPlugin

        self.register(GithubPlugin())

    def load_entrypoints(self) -> int:
        """Register plugins advertised under the `sluice` entry point group."""
        return self._pm.load_setuptools_entrypoints(PROJECT_NAME)

    def register(self, plugin: Any) -> None:
        """Register a plugin under its `name`.

        Raises:
            ValueError: If the plugin has no name or the name is taken
        """
        name = getattr(plugin, "name", None)
        if not name:
            raise ValueError(f"Plugin {plugin!r} must define a non-empty 'name'")
        if self._pm.has_plugin(name):
            raise ValueError(f"Duplicate source plugin name: '{name}'")
        self._pm.register(plugin, name=name)

    @property
    def source_names(self) -> list[str]:
        return sorted(name for name, _ in self._pm.list_name_plugin() if name is not None)

    def _caller(self, source: str, hook_name: str) -> Any:
        if not self._pm.has_plugin(source):
            available = ", ".join(self.source_names) or "none"
            raise KeyError(f"Unknown source plugin '{source}'. Registered plugins: {available}")
        others = [plugin for name, plugin in self._pm.list_name_plugin() if name != source]
        return self._pm.subset_hook_caller(hook_name, remove_plugins=others)

    def build_registry(self, source: str) -> SubTaskRegistry:
        """Registry holding the stages of one source plugin."""
        registry = SubTaskRegistry()
        for metas in self._caller(source, "sluice_get_subtasks")():
            registry.extend(metas)
        return registry

    def metadata(self, source: str) -> "list[MetaData]":
        return list(self._caller(source, "sluice_get_metadata")())

    def prepare_task(self, source: str, options: Mapping[str, Any], rate_limits: "RateLimitRegistry") -> "TaskSetup":
        setup: TaskSetup | None = self._caller(source, "sluice_prepare_task")(options=options, rate_limits=rate_limits)
        if setup is None:
            raise ValueError(f"Source plugin '{source}' does not implement sluice_prepare_task")
        return setup
