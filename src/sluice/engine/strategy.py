# src/sluice/engine/strategy.py
"""CollectorStrategy: how one collector talks to one endpoint.

Three capabilities, each overridable in a subclass:

    build_request(scope, pager)   URL template + pager params + extra query
    parse_response(response)      JSON body -> items
    classify_response(result)     page outcome -> Disposition

The default classification policy:

    usable 2xx               continue
    404                      skip-item
    retries exhausted        skip-item
    unparseable body         skip-item (unless skip_parse_errors=False)
    any other failure        abort-all
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Generic, NamedTuple, TypeVar

import httpx
from jinja2 import StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from sluice.contracts.enums import Disposition
from sluice.contracts.errors import NotFoundError, ResponseParseError, RetryExhausted
from sluice.contracts.results import FetchAttemptResult
from sluice.engine.pagination import PageState, Pager, dig
from sluice.plugins.clients.http import ApiRequest

InputT = TypeVar("InputT")

_TEMPLATES = SandboxedEnvironment(undefined=StrictUndefined, autoescape=False, keep_trailing_newline=False)


@dataclass(frozen=True)
class RequestScope(Generic[InputT]):
    """What a request is built from: task params, the current item and page."""

    params: Mapping[str, Any]
    input: InputT | None
    page: PageState


class ParsedPage(NamedTuple):
    body: Any
    items: list[Any]


class CollectorStrategy(Generic[InputT]):
    """Default request building, parsing and classification.

    Args:
        url_template: Jinja2 template rendered with `params`, `input` and
            `page`; undefined variables raise
        items_path: Dotted path to the item array, None when the body is the array
        query: Extra query parameters added to every request
        method: HTTP method
        skip_parse_errors: Skip items whose body cannot be parsed instead of aborting

    Example:
        strategy = CollectorStrategy(
            "repos/{{ params.name }}/actions/runs/{{ input.id }}/jobs",
            items_path="jobs",
        )
    """

    def __init__(
        self,
        url_template: str,
        *,
        items_path: str | None = None,
        query: Mapping[str, Any] | None = None,
        method: str = "GET",
        skip_parse_errors: bool = True,
    ) -> None:
        self.url_template = url_template
        self.items_path = items_path
        self.method = method
        self.skip_parse_errors = skip_parse_errors
        self._query = dict(query or {})
        self._template = _TEMPLATES.from_string(url_template)

    def render_url(self, scope: RequestScope[InputT]) -> str:
        return self._template.render(params=scope.params, input=scope.input, page=scope.page)

    def query(self, scope: RequestScope[InputT]) -> dict[str, Any]:
        """Query parameters beyond the pager's."""
        return dict(self._query)

    def build_request(self, scope: RequestScope[InputT], pager: Pager) -> ApiRequest:
        return ApiRequest(
            url=self.render_url(scope),
            method=self.method,
            params={**pager.params(scope.page), **self.query(scope)},
        )

    def parse_response(self, response: httpx.Response) -> ParsedPage:
        """Decode a 2xx body into its items.

        Raises:
            ResponseParseError: Body is not JSON, items_path is missing, or the
                items are not a JSON array
        """
        try:
            body = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ResponseParseError(f"Response body is not valid JSON: {e}") from e
        if body is None and self.items_path is None:
            return ParsedPage(body, [])
        try:
            items = dig(body, self.items_path)
        except KeyError as e:
            raise ResponseParseError(str(e.args[0])) from e
        if items is None:
            return ParsedPage(body, [])
        if not isinstance(items, list):
            where = self.items_path or "response body"
            raise ResponseParseError(f"Expected a JSON array at {where}, got {type(items).__name__}")
        return ParsedPage(body, items)

    def classify_response(self, result: FetchAttemptResult) -> Disposition:
        if result.error is None:
            return Disposition.CONTINUE
        if isinstance(result.error, NotFoundError | RetryExhausted):
            return Disposition.SKIP_ITEM
        if isinstance(result.error, ResponseParseError) and self.skip_parse_errors:
            return Disposition.SKIP_ITEM
        return Disposition.ABORT_ALL

    def skip_reason(self, result: FetchAttemptResult) -> str:
        """Human readable reason recorded for a skipped item."""
        error = result.error
        if error is None:
            return "skipped by strategy"
        text = str(error)
        if result.body and result.body not in text:
            text = f"{text}: {result.body}"
        return text
