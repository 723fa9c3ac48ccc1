"""
Retry policy - exponential backoff for rate-limited task calls.
重试策略 —— 针对限流错误的指数退避重试。

Only rate-limited failures are retried:
  - structured: HTTP 429 status/code, or a RESOURCE_EXHAUSTED status
  - unstructured: the message mentions "429" or "rate limit"
Everything else is classified as permanent and propagates immediately.

只有限流错误会被重试：
  - 结构化错误：HTTP 429 状态码/错误码，或 RESOURCE_EXHAUSTED 状态
  - 非结构化错误：错误信息中包含 "429" 或 "rate limit"
其他错误一律视为永久错误，立即向上抛出。
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TypeVar

import config
from tasks.errors import PermanentTaskError, TaskError, TransientTaskError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RATE_LIMIT_STATUSES = {"RESOURCE_EXHAUSTED", "rate_limit_exceeded"}


@dataclass
class RetryPolicy:
    """
    Attempt ceiling and backoff parameters.
    尝试次数上限与退避参数。

    wait before retry n (0-based) = base_delay * 2**n + uniform(0, max_jitter)
    第 n 次重试前等待 = base_delay * 2**n + uniform(0, max_jitter)
    """
    max_attempts: int = field(default_factory=lambda: config.TASK_MAX_ATTEMPTS)
    base_delay: float = field(default_factory=lambda: config.RETRY_BASE_DELAY)
    max_jitter: float = field(default_factory=lambda: config.RETRY_MAX_JITTER)
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    jitter: Callable[[float, float], float] = random.uniform

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * (2 ** attempt) + self.jitter(0, self.max_jitter)


def _structured_error(error: BaseException) -> dict[str, Any] | None:
    """
    Extract a structured error payload from an SDK exception, if it has one.
    从 SDK 异常中提取结构化错误体（若有）。

    Looks at `.body` first (openai.APIStatusError), then tries to parse the
    message as JSON, e.g. '{"error": {"code": 429, "status": "RESOURCE_EXHAUSTED"}}'.
    """
    body = getattr(error, "body", None)
    if not isinstance(body, dict):
        try:
            body = json.loads(str(error))
        except (TypeError, ValueError):
            return None
    if not isinstance(body, dict):
        return None
    inner = body.get("error")
    return inner if isinstance(inner, dict) else body


def is_rate_limited(error: BaseException) -> bool:
    if getattr(error, "status_code", None) == 429:
        return True

    details = _structured_error(error)
    if details is not None:
        code = details.get("code")
        return str(code) == "429" or code in RATE_LIMIT_STATUSES or details.get("status") in RATE_LIMIT_STATUSES

    message = str(error)
    return "429" in message or "rate limit" in message.lower()


def format_error(error: BaseException) -> str:
    """
    Human-readable message: 'Error: <message> (Status: <status>)'.
    生成人类可读的错误信息；结构化错误体中的 message/status 优先。
    """
    message = str(error) or error.__class__.__name__
    details = _structured_error(error)
    if details is not None and details.get("message"):
        message = str(details["message"])
        status = details.get("status") or details.get("type")
        if status:
            message += f" (Status: {status})"
    return f"Error: {message}"


async def with_retry(
    call: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    context: str = "task",
) -> T:
    """
    Run `call`, retrying rate-limited failures with exponential backoff.
    执行 `call`，限流失败时按指数退避重试。

    Raises:
        TransientTaskError: still rate limited after the last attempt
        PermanentTaskError: any other failure, on the attempt it happened
    """
    policy = policy or RetryPolicy()
    for attempt in range(policy.max_attempts):
        try:
            return await call()
        except TaskError:
            raise  # 已分类的错误直接透传
        except Exception as exc:
            if not is_rate_limited(exc):
                logger.error("[Retry] %s failed: %s", context, exc)
                raise PermanentTaskError(format_error(exc)) from exc

            if attempt < policy.max_attempts - 1:
                wait = policy.delay_for(attempt)
                logger.warning(
                    "[Retry] %s rate limited. Retrying in %.1fs... (Attempt %d/%d)",
                    context, wait, attempt + 1, policy.max_attempts,
                )
                await policy.sleep(wait)
                continue

            logger.error("[Retry] %s failed after %d attempts due to rate limiting", context, policy.max_attempts)
            raise TransientTaskError(format_error(exc)) from exc

    raise PermanentTaskError(f"Error: {context} was not attempted (max_attempts={policy.max_attempts})")
