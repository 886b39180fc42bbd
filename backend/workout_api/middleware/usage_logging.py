"""
Request-scoped correlation, usage logging and last-resort error handling.

For every request:
  • request.state.request_id is minted at entry; every envelope (success
    or error) echoes it, and it is returned in X-Request-ID.
  • Once the response exists, an admitted request (request.state.key_id
    set by require_api_access) gets one api_usage row, written in the
    background so the client never waits for it.
  • Rate-limit headers of admitted requests are attached to the final
    response, including error responses raised after admission.
  • Anything that escaped every exception handler becomes a 500
    INTERNAL_ERROR envelope here (and is still logged).
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from workout_api.core.errors import internal_error_response
from workout_api.core.tasks import fire_and_forget
from workout_api.services.usage_logger import generate_request_id

logger = logging.getLogger(__name__)


class UsageLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request.state.request_id = generate_request_id()
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Unhandled error on %s %s (%s)",
                request.method, request.url.path, request.state.request_id,
            )
            response = internal_error_response(request)

        response.headers["X-Request-ID"] = request.state.request_id

        key_id = getattr(request.state, "key_id", None)
        if key_id is None:
            return response

        for name, value in getattr(request.state, "rate_limit_headers", {}).items():
            response.headers.setdefault(name, value)

        endpoint = request.url.path
        if request.url.query:
            endpoint = f"{endpoint}?{request.url.query}"
        elapsed_ms = int((time.perf_counter() - started) * 1000)

        usage_logger = request.app.state.usage_logger
        fire_and_forget(
            usage_logger.log_usage(
                key_id,
                endpoint,
                request.method,
                response.status_code,
                elapsed_ms,
                request.state.request_id,
            ),
            name=f"usage:{request.state.request_id}",
        )
        return response
