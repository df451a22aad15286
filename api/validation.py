"""
api/validation.py -- Schema-based request validation pipeline.

A route declares a RequestSchemas (body / query / params, each an optional
pydantic model). validate_input() checks the present parts in the fixed order
body -> query -> params. The first part that fails stops the pipeline and
yields one ValidationError (400) carrying every issue from that part only;
later parts are not looked at. On success each validated part is replaced by
its coerced model instance, so handlers never re-validate.

Issue format: {field: dotted path, message}. pydantic reports issues in
schema traversal order, which is preserved.

The FastAPI adapter validated(schemas) reads the raw parts off the request,
runs the pipeline, stores the result on request.state.validated and unwraps.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from fastapi import Request
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from core.errors import APIError, ErrorKind, ValidationIssue, issue
from core.result import Err, Ok, Result

logger = logging.getLogger("authgate.validation")

_PARTS = ("body", "query", "params")


@dataclass(frozen=True)
class RequestSchemas:
    body: Optional[type[BaseModel]] = None
    query: Optional[type[BaseModel]] = None
    params: Optional[type[BaseModel]] = None


@dataclass(frozen=True)
class RequestInput:
    body: Any = None
    query: Any = field(default_factory=dict)
    params: Any = field(default_factory=dict)


def format_issues(errors: list[dict], part: str) -> list[ValidationIssue]:
    """Map pydantic error dicts to ValidationIssues.

    An error at the root of the part (empty loc) is reported against the part
    name itself, e.g. "body" when the body is not an object.
    """
    issues = []
    for err in errors:
        path = ".".join(str(p) for p in err.get("loc", ()))
        issues.append(ValidationIssue(field=path or part, message=err.get("msg", "Invalid value")))
    return issues


def validation_error(issues: list[ValidationIssue]) -> APIError:
    return APIError(ErrorKind.VALIDATION_ERROR, "Validation Error", issues)


def validate_input(schemas: RequestSchemas, data: RequestInput) -> Result[RequestInput]:
    """Run the body -> query -> params pipeline. Fail-closed on the first bad part."""
    validated: dict[str, Any] = {}
    for part in _PARTS:
        schema = getattr(schemas, part)
        raw = getattr(data, part)
        if schema is None:
            validated[part] = raw
            continue
        try:
            validated[part] = schema.model_validate(raw)
        except PydanticValidationError as exc:
            issues = format_issues(exc.errors(), part)
            logger.warning("Validation error in request %s (%d issues)", part, len(issues))
            return Err(validation_error(issues))
    return Ok(RequestInput(**validated))


async def _read_json_body(request: Request) -> Result[Any]:
    raw = await request.body()
    if not raw:
        return Ok(None)
    try:
        return Ok(json.loads(raw))
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Malformed JSON body on %s", request.url.path)
        return Err(validation_error(issue("body", "Malformed JSON body")))


def validated(schemas: RequestSchemas):
    """Build a FastAPI dependency that validates the request against schemas.

    Use as:
        @router.post("/auth/login")
        def login(payload: RequestInput = Depends(validated(LOGIN_SCHEMAS))): ...
    """

    async def dependency(request: Request) -> RequestInput:
        body = (await _read_json_body(request)).unwrap() if schemas.body is not None else None
        data = RequestInput(
            body=body,
            query=dict(request.query_params),
            params=dict(request.path_params),
        )
        result = validate_input(schemas, data).unwrap()
        request.state.validated = result
        return result

    return dependency
