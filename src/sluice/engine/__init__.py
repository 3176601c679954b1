"""Execution engine: collectors, extractors, pagination, retry and the pipeline runner."""

from sluice.engine.collector import StatefulApiCollector
from sluice.engine.extractor import ExtractFn, RawDataExtractor
from sluice.engine.pagination import (
    NextCursorPager,
    PageNumberPager,
    Pager,
    PageState,
    SinglePagePager,
    TotalPagesPager,
)
from sluice.engine.retry import MaxRetriesExceeded, RetryManager
from sluice.engine.runner import PipelineRunner
from sluice.engine.strategy import CollectorStrategy, ParsedPage, RequestScope

__all__ = [
    "CollectorStrategy",
    "ExtractFn",
    "MaxRetriesExceeded",
    "NextCursorPager",
    "PageNumberPager",
    "PageState",
    "Pager",
    "ParsedPage",
    "PipelineRunner",
    "RawDataExtractor",
    "RequestScope",
    "RetryManager",
    "SinglePagePager",
    "StatefulApiCollector",
    "TotalPagesPager",
]
