# src/sluice/plugins/registry.py
"""SubTaskRegistry: the stages one pipeline run may execute.

Built explicitly at start-up (usually from plugin hooks) and handed to the
runner. Nothing registers itself at import time.
"""

from collections.abc import Iterable, Iterator

from sluice.contracts.subtask import SubTaskMeta


class SubTaskRegistry:
    """Ordered, name-unique collection of SubTaskMeta.

    Registration order is the tie-breaker for stages the table relation does
    not order.

    Usage:
        registry = SubTaskRegistry()
        registry.register(CollectRunsMeta)
        registry.extend(plugin_metas)
    """

    def __init__(self, metas: Iterable[SubTaskMeta] = ()) -> None:
        self._metas: dict[str, SubTaskMeta] = {}
        self.extend(metas)

    def register(self, meta: SubTaskMeta) -> SubTaskMeta:
        """Add a stage.

        Raises:
            ValueError: If a stage with the same name is already registered
        """
        if meta.name in self._metas:
            raise ValueError(f"Duplicate stage name: '{meta.name}'. Already registered by {self._metas[meta.name].entry_point!r}")
        self._metas[meta.name] = meta
        return meta

    def extend(self, metas: Iterable[SubTaskMeta]) -> None:
        for meta in metas:
            self.register(meta)

    def get(self, name: str) -> SubTaskMeta:
        """Look up a stage by name.

        Raises:
            KeyError: If no such stage is registered
        """
        try:
            return self._metas[name]
        except KeyError:
            available = ", ".join(self._metas) or "none"
            raise KeyError(f"Unknown stage '{name}'. Registered stages: {available}") from None

    @property
    def metas(self) -> tuple[SubTaskMeta, ...]:
        return tuple(self._metas.values())

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._metas)

    def __contains__(self, name: object) -> bool:
        return name in self._metas

    def __iter__(self) -> Iterator[SubTaskMeta]:
        return iter(self.metas)

    def __len__(self) -> int:
        return len(self._metas)
