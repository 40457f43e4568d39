"""Role-based access control middleware for FastAPI."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response
from starlette.types import ASGIApp

from apps.api.dependencies.auth import TokenMap, User, resolve_user_from_token

logger = logging.getLogger(__name__)


class RBACMiddleware(BaseHTTPMiddleware):
    """Populate ``request.state.user`` from the bearer token before routing."""

    def __init__(self, app: ASGIApp, tokens: TokenMap | None = None) -> None:
        super().__init__(app)
        self._tokens = tokens

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        authorization = request.headers.get("Authorization")
        token: str | None = None

        if authorization:
            scheme, _, credentials = authorization.partition(" ")
            if scheme.lower() != "bearer":
                return JSONResponse(
                    status_code=401, content={"detail": "Invalid authentication credentials"}
                )
            token = credentials.strip() or None

        try:
            user: User = resolve_user_from_token(token, self._tokens)
        except HTTPException as exc:
            logger.warning("Rejected bearer token on %s %s", request.method, request.url.path)
            return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

        request.state.user = user
        response = await call_next(request)
        return response
