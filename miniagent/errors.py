"""Exception types raised by miniagent."""


class MiniAgentError(Exception):
    """Base class for miniagent errors."""


class UnsupportedProviderError(MiniAgentError, ValueError):
    """Raised at construction time for an unknown provider identifier."""


class ProviderStreamError(MiniAgentError, RuntimeError):
    """
    The backend reported an error inside an otherwise healthy stream.

    HTTP-level failures are not wrapped; they surface as the ``httpx``
    exceptions raised by the transport.
    """

    def __init__(self, message: str, error_type: str | None = None) -> None:
        super().__init__(message)
        self.error_type = error_type
