"""Shared fixtures: a throwaway config rooted in tmp_path and a routing mock transport."""

import httpx
import pytest

from hktransport.common.config import ApiConfig, AppConfig, CacheConfig, OutputConfig

PUBLISHED = "https://published.test/data"


@pytest.fixture()
def app_config(tmp_path):
    return AppConfig(
        api=ApiConfig(requests_per_second=100, concurrent_requests=2, retry_limit=3, retry_backoff=0),
        cache=CacheConfig(dir=str(tmp_path / ".cache"), enabled=False),
        output=OutputConfig(ctb_dir=str(tmp_path / "ctb"), kmb_dir=str(tmp_path / "kmb")),
        published_base_url=PUBLISHED,
    )


class RoutingTransport(httpx.MockTransport):
    """Serves JSON by URL path; unknown paths are 404. Records every requested path."""

    def __init__(self, routes):
        self.routes = routes
        self.requested = []
        super().__init__(self._handle)

    def _handle(self, request):
        path = request.url.path
        self.requested.append(path)
        body = self.routes.get(path)
        if body is None:
            return httpx.Response(404, json={"message": "not found"})
        if isinstance(body, httpx.Response):
            # fresh copy per request, retries reuse the same route
            return httpx.Response(body.status_code, headers=body.headers, content=body.content)
        if callable(body):
            return body(request)
        return httpx.Response(200, json=body)


@pytest.fixture()
def routing_transport():
    return RoutingTransport
