# urlguard/errors.py
from enum import Enum


class URLGuardError(Exception):
    """Base class for errors raised by the classification engine"""


class LoadErrorKind(str, Enum):
    IO = "io"
    PARSE = "parse"


class LoadError(URLGuardError):
    """Raised when the dataset file cannot be read or parsed"""

    def __init__(self, kind: LoadErrorKind, path: str, message: str):
        super().__init__(f"{message} ({path})")
        self.kind = kind
        self.path = path
        self.message = message
