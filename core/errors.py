"""Error taxonomy for the decision engine.

None of these are meant to cross the executor, inference client or orchestrator
boundaries; they are raised internally and converted to structured results.
"""
from __future__ import annotations


class EngineError(Exception):
    """Base class for engine errors."""


class ValidationError(EngineError):
    """Missing or malformed tool arguments."""

    def __init__(self, message: str, tool_name: str | None = None):
        super().__init__(message)
        self.tool_name = tool_name


class UnknownActionError(EngineError):
    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = list(available)
        super().__init__(f'Unknown tool: "{name}". Available: {", ".join(self.available)}')


class InferenceTimeout(EngineError):
    def __init__(self, path: str, timeout_s: float):
        self.path = path
        self.timeout_s = timeout_s
        super().__init__(f"{path} inference timed out after {timeout_s:.0f}s")


class InferenceBackendError(EngineError):
    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"{path}: {message}")


class PersistenceError(EngineError):
    pass


class ExternalIntegrationError(EngineError):
    pass
