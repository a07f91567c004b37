"""Request ID middleware: generates or propagates X-Request-Id.

Requests on ``/api/v1/accounts/<id>/...`` also bind the account id, so
every log line of a claim, trial or referral call names its account.
"""

import re
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

ACCOUNT_PATH = re.compile(r"^/api/v1/accounts/(\d+)(?:/|$)")


def account_id_from_path(path: str) -> int | None:
    """The account id addressed by an account-scoped route, if any."""
    match = ACCOUNT_PATH.match(path)
    return int(match.group(1)) if match else None


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Ensure every request has a unique X-Request-Id header."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Bind the request (and account) into the structlog context and echo the id back."""
        request_id = request.headers.get("X-Request-Id", str(uuid.uuid4()))
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        account_id = account_id_from_path(request.url.path)
        if account_id is not None:
            structlog.contextvars.bind_contextvars(account_id=account_id)
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
