import logging
import time
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from askmoe.core.logging import request_id_ctx_var, latency_bucket_ms
from askmoe.core.metrics import http_requests_total, normalize_path


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request_id for the request, count it, and log completion.

    The id is taken from the incoming header when a gateway already set one,
    otherwise generated, and echoed back on the response.
    """

    def __init__(self, app, header_name: str = "x-request-id"):
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request, call_next):
        rid = request.headers.get(self.header_name) or str(uuid4())
        request.state.request_id = rid
        token = request_id_ctx_var.set(rid)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            request_id_ctx_var.reset(token)
        duration_ms = (time.perf_counter() - start) * 1000

        response.headers[self.header_name] = rid
        _record_request_metric(request, response)

        logging.getLogger("askmoe").info(
            "request.complete",
            extra={
                "request_id": rid,
                "path": request.url.path,
                "method": request.method,
                "status": getattr(response, "status_code", None),
                "user_id": getattr(request.state, "user_id", None),
                "latency_bucket": latency_bucket_ms(duration_ms),
            },
        )
        return response


def _record_request_metric(request, response) -> None:
    try:
        http_requests_total.inc(labels={
            "method": request.method.upper(),
            "path": normalize_path(request.url.path),
            "status": str(getattr(response, "status_code", None) or 0),
        })
    except Exception:
        # Metrics must never fail the request
        return
