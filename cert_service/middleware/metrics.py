"""Prometheus metrics middleware; instruments every HTTP request.

Counts, times and tracks in-flight requests for every route, so a new
endpoint cannot ship without showing up on the dashboards.

The endpoint label is the matched route template
(``/v1/certificates/{credential_id}/verify``), not the raw path.  Raw
paths would mint a new time series for every credential id ever
verified.

The label is read from the scope *after* the request has been routed:
the router writes ``route`` and ``path_params`` into the same scope dict
this middleware holds.  The template is rebuilt from the raw path and
the path params rather than read off the route object, because a route
inside an included router only knows its own suffix.
"""

from __future__ import annotations

import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from cert_service.core.metrics import ACTIVE_REQUESTS, REQUEST_COUNT, REQUEST_DURATION

UNMATCHED = "unmatched"


def endpoint_label(scope: dict, path: str) -> str:
    """Route template for a routed scope; ``unmatched`` when nothing matched."""
    if scope.get("route") is None:
        return UNMATCHED
    by_value = {str(v): k for k, v in (scope.get("path_params") or {}).items()}
    return "/".join(
        f"{{{by_value[s]}}}" if s in by_value else s for s in path.split("/")
    )


class MetricsMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for every HTTP request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Prometheus scrapes would otherwise dominate the request count.
        if request.url.path == "/metrics":
            return await call_next(request)

        # Routing may rewrite scope["path"] for mounted apps; keep the full one.
        path = request.url.path
        ACTIVE_REQUESTS.inc()
        start = time.monotonic()
        status_code: str | None = None

        try:
            response = await call_next(request)
            status_code = str(response.status_code)
        except Exception:
            # Starlette turns an unhandled exception into a 500.
            status_code = "500"
            raise
        finally:
            duration = time.monotonic() - start
            endpoint = endpoint_label(request.scope, path)
            ACTIVE_REQUESTS.dec()
            REQUEST_COUNT.labels(
                method=request.method,
                endpoint=endpoint,
                status_code=status_code if status_code is not None else "500",
            ).inc()
            REQUEST_DURATION.labels(
                method=request.method,
                endpoint=endpoint,
            ).observe(duration)

        return response
