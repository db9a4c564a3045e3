"""MCPツール共通のヘルパー。"""

from typing import Any

from fastmcp.server.dependencies import get_http_request

from specwizard.models.errors import InputValidationError, RateLimitedError, SpecWizardError


def error_response(e: SpecWizardError) -> dict[str, Any]:
    """例外をツールの戻り値形式に変換する。"""
    response: dict[str, Any] = {"error": type(e).__name__, "message": str(e)}
    if isinstance(e, InputValidationError):
        response["errors"] = e.errors
    elif isinstance(e, RateLimitedError):
        response["budget"] = e.budget
        response["retry_after"] = e.retry_after
    return response


def client_identity(fallback: str) -> str:
    """レート制限の単位となる呼び出し元を返す。HTTP経由でなければfallback。"""
    try:
        request = get_http_request()
    except RuntimeError:
        return fallback
    return request.client.host if request.client else fallback
