"""Exceptions raised by compkey."""

from typing import Optional


class CompKeyError(Exception):
    """Base class for all compkey errors."""


class KeyConstructionError(CompKeyError):
    """Raised when the key-construction primitive cannot produce a key.

    Attributes:
        function_name: Name of the function whose key was being built, if known.
    """

    def __init__(self, message: str, function_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.function_name = function_name
