"""生成器呼び出しを守る固定ウィンドウ型レート制限とバックオフ。"""

import asyncio
import logging
import math
import random
import threading
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass

from specwizard.generator.base import PromptMessage, TextGenerator
from specwizard.models.errors import RateLimitedError

logger = logging.getLogger(__name__)

MonotonicClock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


def estimate_tokens(text: str) -> int:
    """トークン数の概算（1トークン ≒ 4文字）。"""
    return math.ceil(len(text) / 4)


@dataclass
class _Window:
    started_at: float
    requests: int = 0
    tokens: int = 0


class RateLimiter:
    """呼び出し元ごとのリクエスト数・トークン数の固定ウィンドウカウンタ。

    カウンタは同一呼び出し元の全リクエストで共有されるため、
    増分と判定はロック内でまとめて行う。
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 60,
        max_tokens: int = 100_000,
        clock: MonotonicClock = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.max_tokens = max_tokens
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def _sweep(self, now: float) -> int:
        # ロック保持中に呼ぶこと
        stale = [k for k, w in self._windows.items() if now - w.started_at >= self.window_seconds]
        for key in stale:
            del self._windows[key]
        self._last_sweep = now
        return len(stale)

    def _current(self, identity: str, now: float) -> _Window:
        # 1ウィンドウに1度、期限切れのカウンタをまとめて捨てる
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)
        window = self._windows.get(identity)
        if window is None or now - window.started_at >= self.window_seconds:
            window = _Window(started_at=now)
            self._windows[identity] = window
        return window

    def is_rate_limited(self, identity: str) -> bool:
        """リクエストを1件計上し、リクエスト予算を超えたかを返す。"""
        with self._lock:
            window = self._current(identity, self._clock())
            window.requests += 1
            limited = window.requests > self.max_requests
        if limited:
            logger.warning("Request budget exceeded for %s", identity)
        return limited

    def record_tokens(self, identity: str, tokens: int) -> None:
        """補完完了後に消費トークン数を計上する。"""
        with self._lock:
            self._current(identity, self._clock()).tokens += tokens

    def is_token_budget_exceeded(self, identity: str) -> bool:
        with self._lock:
            return self._current(identity, self._clock()).tokens >= self.max_tokens

    def retry_after(self, identity: str) -> float:
        """現在のウィンドウが終わるまでの秒数。"""
        with self._lock:
            now = self._clock()
            window = self._current(identity, now)
            return max(0.0, self.window_seconds - (now - window.started_at))

    def usage(self, identity: str) -> dict[str, float]:
        """監視用に現在のウィンドウの使用状況を返す。"""
        with self._lock:
            window = self._current(identity, self._clock())
            return {
                "requests": window.requests,
                "tokens": window.tokens,
                "max_requests": self.max_requests,
                "max_tokens": self.max_tokens,
            }

    def cleanup(self) -> int:
        """期限切れのウィンドウを破棄し、破棄件数を返す。"""
        with self._lock:
            return self._sweep(self._clock())


async def call_with_backoff(
    fn: Callable[[], Awaitable[str]],
    limiter: RateLimiter,
    identity: str,
    *,
    max_attempts: int = 5,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    sleep: Sleep = asyncio.sleep,
) -> str:
    """レート制限中は呼び出さずに指数バックオフで待機し、許可されたら実行する。

    Args:
        fn: 生成器呼び出し。
        limiter: 共有のレート制限。
        identity: 呼び出し元の識別子。
        max_attempts: 判定の最大試行回数。
        base_delay: 初回の待機秒数。
        max_delay: 待機秒数の上限。
        sleep: 待機関数（テストで差し替え可能）。

    Returns:
        生成器の出力テキスト。

    Raises:
        RateLimitedError: 全試行でレート制限された場合。
    """
    delay = base_delay
    for attempt in range(1, max_attempts + 1):
        if limiter.is_token_budget_exceeded(identity):
            budget = "token"
        elif limiter.is_rate_limited(identity):
            budget = "request"
        else:
            text = await fn()
            limiter.record_tokens(identity, estimate_tokens(text))
            return text

        if attempt == max_attempts:
            raise RateLimitedError(identity, budget, limiter.retry_after(identity))
        wait = min(delay, max_delay) * random.uniform(0.9, 1.1)
        logger.info("Rate limited (%s) for %s, retrying in %.2fs (attempt %d)", budget, identity, wait, attempt)
        await sleep(wait)
        delay *= 2
    raise RateLimitedError(identity, "request", limiter.retry_after(identity))


class RateLimitedGenerator:
    """レート制限とバックオフを適用した生成器ラッパー。"""

    def __init__(
        self,
        inner: TextGenerator,
        limiter: RateLimiter,
        *,
        identity: str = "default",
        max_attempts: int = 5,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._inner = inner
        self._limiter = limiter
        self._identity = identity
        self._max_attempts = max_attempts
        self._sleep = sleep

    def for_identity(self, identity: str) -> "RateLimitedGenerator":
        """呼び出し元を指定した同一設定のラッパーを返す。"""
        return RateLimitedGenerator(
            self._inner,
            self._limiter,
            identity=identity,
            max_attempts=self._max_attempts,
            sleep=self._sleep,
        )

    async def complete(
        self,
        messages: list[PromptMessage],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> str:
        return await call_with_backoff(
            lambda: self._inner.complete(messages, temperature, max_tokens),
            self._limiter,
            self._identity,
            max_attempts=self._max_attempts,
            sleep=self._sleep,
        )

    async def stream(
        self,
        messages: list[PromptMessage],
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]:
        # ストリーミングでは許可判定のみ先に行い、トークンは完了後に計上する
        await call_with_backoff(
            _allowed,
            self._limiter,
            self._identity,
            max_attempts=self._max_attempts,
            sleep=self._sleep,
        )
        parts: list[str] = []
        try:
            async for chunk in self._inner.stream(messages, temperature, max_tokens):
                parts.append(chunk)
                yield chunk
        finally:
            self._limiter.record_tokens(self._identity, estimate_tokens("".join(parts)))


async def _allowed() -> str:
    return ""
