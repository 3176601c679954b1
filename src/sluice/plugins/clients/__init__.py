"""HTTP clients used by collectors."""

from sluice.plugins.clients.http import ApiClient, ApiRequest, parse_retry_after, preview_body

__all__ = ["ApiClient", "ApiRequest", "parse_retry_after", "preview_body"]
