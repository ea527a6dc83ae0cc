class ContextEngineError(Exception):
    """Base class for errors raised inside the context engine"""


class OperationalFailure(ContextEngineError):
    """A context construction step failed; the manager converts this into a fallback context"""

    def __init__(self, step: str, cause: Exception):
        super().__init__(f"{step} failed: {cause}")
        self.step = step
        self.cause = cause


class ContextManagerShutdownError(ContextEngineError):
    """Raised when a shut-down manager is asked to initialize again"""
