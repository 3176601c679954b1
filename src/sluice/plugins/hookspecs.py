# src/sluice/plugins/hookspecs.py
"""pluggy hook specifications for sluice data-source plugins.

A data-source plugin contributes its stages, the product tables they write
and the per-run setup (params, authenticated client) those stages expect.

Usage (implementing a plugin):
    from sluice.plugins.hookspecs import hookimpl

    class MyPlugin:
        name = "mysource"

        @hookimpl  # NOT @hookspec - that's for defining specs
        def sluice_get_subtasks(self):
            return [COLLECT_THINGS, EXTRACT_THINGS]

Note: @hookspec defines the hook interface (done here).
      @hookimpl marks plugin implementations of those hooks.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import pluggy

if TYPE_CHECKING:
    from sqlalchemy import MetaData

    from sluice.contracts.subtask import SubTaskMeta, TaskSetup
    from sluice.core.rate_limit import RateLimitRegistry

# Project name for pluggy (also the entry point group for external plugins)
PROJECT_NAME = "sluice"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class SluiceSourceSpec:
    """Hook specifications for data-source plugins."""

    @hookspec
    def sluice_get_subtasks(self) -> list["SubTaskMeta"]:  # type: ignore[empty-body]
        """Return the plugin's stages in registration order."""

    @hookspec
    def sluice_get_metadata(self) -> "MetaData":  # type: ignore[empty-body]
        """Return the MetaData holding the plugin's product tables."""

    @hookspec(firstresult=True)
    def sluice_prepare_task(  # type: ignore[empty-body]
        self,
        options: Mapping[str, Any],
        rate_limits: "RateLimitRegistry",
    ) -> "TaskSetup":
        """Validate the plugin's options and build params and data for a run.

        Args:
            options: The plugin's section of `sources` in the settings
            rate_limits: Registry to take the plugin's request limiter from
        """
