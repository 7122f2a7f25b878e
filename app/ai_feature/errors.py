"""Failures raised by the question-to-SQL pipeline.

Every stage failure is a ``QueryPipelineError`` so the endpoint can turn it
into a single JSON error shape: ``{"error": ..., **extra}``.
"""

from typing import Any, Dict, Optional

from fastapi import status


class QueryPipelineError(Exception):
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_payload(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class InputError(QueryPipelineError):
    status_code = status.HTTP_400_BAD_REQUEST


class ConfigError(QueryPipelineError):
    pass


class GenerationError(QueryPipelineError):
    """LLM call failed; upstream status and body are logged, not returned."""

    def __init__(
        self,
        message: str = "Failed to generate SQL",
        upstream_status: Optional[int] = None,
        upstream_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.upstream_body = upstream_body


class InvalidSQLError(QueryPipelineError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: Optional[str], sql: str):
        super().__init__("Generated SQL invalid", reason=reason, sql=sql)
        self.reason = reason
        self.sql = sql


class ExecutionError(QueryPipelineError):
    def __init__(self, detail: str, sql: str):
        super().__init__("Database execution error", detail=detail, sql=sql)
        self.detail = detail
        self.sql = sql


class SummaryError(QueryPipelineError):
    def __init__(self, message: str = "Failed to summarize query results"):
        super().__init__(message)
