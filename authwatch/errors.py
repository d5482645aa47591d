# authwatch/errors.py


class AuthwatchError(Exception):
    """Base class for detector errors."""


class ConfigError(AuthwatchError):
    """Configuration file or value is invalid."""


class ParseError(AuthwatchError):
    """A whole input source could not be read or parsed."""

    def __init__(self, path, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class InputDirectoryError(AuthwatchError):
    """The input directory cannot be enumerated, nothing left to do."""
