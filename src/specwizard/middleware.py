"""URLトークン認証とHTTPレート制限のミドルウェア。"""

import math

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

from specwizard.services.rate_limit import RateLimiter

SKIP_PATHS = {"/health"}


class TokenAuthMiddleware(BaseHTTPMiddleware):
    """クエリパラメータのtokenを検証するミドルウェア。

    SPECWIZARD_URL_TOKEN が設定されている場合、/mcp へのリクエストに
    token クエリパラメータの一致を要求する。
    /health はヘルスチェック用のため検証をスキップする。
    """

    def __init__(self, app: ASGIApp, url_token: str = "") -> None:
        super().__init__(app)
        self.url_token = url_token

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not self.url_token or request.url.path in SKIP_PATHS:
            return await call_next(request)

        if request.query_params.get("token", "") != self.url_token:
            return JSONResponse(
                {"error": "Unauthorized", "message": "Invalid or missing token"},
                status_code=401,
            )
        return await call_next(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """クライアントIPごとにリクエスト数を制限するミドルウェア。

    予算を超えたリクエストには429とRetry-Afterヘッダーを返す。
    """

    def __init__(self, app: ASGIApp, limiter: RateLimiter) -> None:
        super().__init__(app)
        self.limiter = limiter

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path in SKIP_PATHS:
            return await call_next(request)

        identity = request.client.host if request.client else "unknown"
        if self.limiter.is_rate_limited(identity):
            retry_after = self.limiter.retry_after(identity)
            return JSONResponse(
                {
                    "error": "RateLimitedError",
                    "message": "Too many requests",
                    "budget": "request",
                    "retry_after": retry_after,
                },
                status_code=429,
                headers={"Retry-After": str(math.ceil(retry_after))},
            )
        return await call_next(request)
