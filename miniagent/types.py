from dataclasses import dataclass


@dataclass
class ToolResult:
    success: bool
    content: str
    error: str | None = None
    error_code: str | None = None


class ErrorCode:
    VALIDATION_ERROR = "validation_error"
    TIMEOUT = "timeout"
    TOOL_EXCEPTION = "tool_exception"
    UNKNOWN_TOOL = "unknown_tool"
