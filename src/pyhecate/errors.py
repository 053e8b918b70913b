from __future__ import annotations


class DaemonError(RuntimeError):
    """Transport, HTTP or envelope failure talking to the daemon."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamCancelled(DaemonError):
    """The user cancelled the stream; not a failure."""


class ConfigurationError(ValueError):
    pass


class LoopBusyError(RuntimeError):
    pass


class RoundLimitExceeded(RuntimeError):
    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"Stopped after {max_rounds} rounds of tool calls without a final answer")
        self.max_rounds = max_rounds
