"""SpecWizard MCPサーバーのコマンドラインエントリポイント。"""

if __name__ == "__main__":
    import logging

    import uvicorn
    from starlette.middleware import Middleware

    from specwizard.config import ServerConfig
    from specwizard.middleware import RateLimitMiddleware, TokenAuthMiddleware
    from specwizard.server import create_server
    from specwizard.services.rate_limit import RateLimiter

    config = ServerConfig()
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp = create_server(config)
    http_limiter = RateLimiter(
        window_seconds=config.rate_limit_window_seconds,
        max_requests=config.http_rate_limit_max_requests,
    )
    app = mcp.http_app(
        transport="streamable-http",
        middleware=[
            Middleware(TokenAuthMiddleware, url_token=config.url_token),
            Middleware(RateLimitMiddleware, limiter=http_limiter),
        ],
    )
    uvicorn.run(app, host=config.host, port=config.port)
