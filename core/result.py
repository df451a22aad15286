"""
core/result.py -- Explicit success/failure values for pipeline stages.

Validation, rate limiting, token verification and the credential service all
return Ok(value) or Err(APIError) instead of raising. The HTTP layer is the
only place that converts an Err into a response: it calls unwrap(), which
raises the carried APIError into the FastAPI exception handlers.

Usage:
    result = service.login(email=..., password=..., client=...)
    if isinstance(result, Err):
        log(result.error.kind)
    session = result.unwrap()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, NoReturn, TypeVar, Union

from core.errors import APIError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    error: APIError

    def unwrap(self) -> NoReturn:
        raise self.error


Result = Union[Ok[T], Err]
