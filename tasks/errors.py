"""
Task error taxonomy.
任务错误分类。

    TaskError
    ├── TaskValidationError   request is malformed, nothing was sent / 请求不合法，未发出调用
    ├── TransientTaskError    rate limited and retries exhausted / 限流且重试耗尽
    └── PermanentTaskError    any other failure, never retried / 其他失败，不重试
        └── TransportError    fetching a finished result failed / 获取已完成结果时网络失败
"""


class TaskError(Exception):
    """Base class for every error raised by the task client."""
    pass


class TaskValidationError(TaskError):
    pass


class TransientTaskError(TaskError):
    pass


class PermanentTaskError(TaskError):
    pass


class TransportError(PermanentTaskError):
    pass
