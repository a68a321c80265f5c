"""
Token middleware - pulls the bearer token off each request.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable
from festchat.session import extract_token


class TokenMiddleware(BaseHTTPMiddleware):
    """Sets request.state.token from the Authorization header (None when absent)."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request.state.token = extract_token(request.headers.get("authorization"))
        response = await call_next(request)
        return response
