from __future__ import annotations

from utils.logger import get_logger

logger = get_logger(__name__)


class ReasoningError(Exception):
    """Base exception for all reasoning-related errors."""

    def __init__(self, message: str):
        super().__init__(message)
        logger.warning(
            "reasoning_error",
            error_type=self.__class__.__name__,
            message=message,
        )


class ActionParseError(ReasoningError):
    """Model output did not contain a recognisable action."""

    def __init__(self, message: str, raw_text: str = ""):
        self.raw_text = raw_text
        super().__init__(message)


class ModelCallError(ReasoningError):
    """The model provider or transport failed; fatal for the current execution."""

    def __init__(self, message: str, *, model: str | None = None):
        self.model = model
        super().__init__(f"Model '{model}': {message}" if model else message)
