"""
Tasks module - resilient access to the external generation API.
任务模块 —— 带重试与长任务轮询的外部生成服务访问层。

Components:
  - client.py: TaskClient (text / image / video operations)
  - retry.py:  rate-limit classification and exponential backoff
  - errors.py: TaskError taxonomy
"""

from tasks.client import TaskClient, load_client_config
from tasks.errors import (
    PermanentTaskError,
    TaskError,
    TaskValidationError,
    TransientTaskError,
    TransportError,
)
from tasks.retry import RetryPolicy, format_error, is_rate_limited, with_retry

__all__ = [
    "TaskClient",
    "load_client_config",
    "TaskError",
    "TaskValidationError",
    "TransientTaskError",
    "PermanentTaskError",
    "TransportError",
    "RetryPolicy",
    "format_error",
    "is_rate_limited",
    "with_retry",
]
