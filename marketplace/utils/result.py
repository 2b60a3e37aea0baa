from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class AuthError:
    code: str
    message: str
    status: int = 401


@dataclass(frozen=True)
class Result:
    """Explicit success/failure channel used at API boundaries."""
    value: Any = None
    error: Optional[AuthError] = None

    @property
    def ok(self):
        return self.error is None

    @classmethod
    def success(cls, value=None):
        return cls(value=value)

    @classmethod
    def failure(cls, code, message, status=401):
        return cls(error=AuthError(code=code, message=message, status=status))
