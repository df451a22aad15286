"""
tests/test_validation.py -- Unit tests for the request validation pipeline.

validate_input() is exercised directly with small schemas; the route-level
behavior (400 envelope on a bad sign-up body) lives in test_auth_routes.py.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from api.models import LoginBody, SignupBody
from api.validation import RequestInput, RequestSchemas, format_issues, validate_input
from core.errors import ErrorKind
from core.result import Err, Ok


class _Profile(BaseModel):
    age: int = Field(ge=0)


class _NestedBody(BaseModel):
    name: str
    profile: _Profile


class _PageQuery(BaseModel):
    page: int = 1


class _IdParams(BaseModel):
    id: int


def _fields(result: Err) -> list[str]:
    return [i.field for i in result.error.details]


class TestPipelineOrder:
    def test_only_first_failing_part_reported(self) -> None:
        """A bad body short-circuits: params issues are never reported."""
        schemas = RequestSchemas(body=SignupBody, params=_IdParams)
        result = validate_input(schemas, RequestInput(body={"email": "bad"}, params={"id": "nope"}))
        assert isinstance(result, Err)
        assert result.error.kind == ErrorKind.VALIDATION_ERROR
        assert result.error.status_code == 400
        assert "id" not in _fields(result), f"params leaked into body failure: {_fields(result)}"
        assert set(_fields(result)) >= {"username", "email", "password"}

    def test_query_checked_before_params(self) -> None:
        schemas = RequestSchemas(query=_PageQuery, params=_IdParams)
        result = validate_input(schemas, RequestInput(query={"page": "x"}, params={"id": "y"}))
        assert _fields(result) == ["page"]

    def test_params_failure_when_earlier_parts_pass(self) -> None:
        schemas = RequestSchemas(query=_PageQuery, params=_IdParams)
        result = validate_input(schemas, RequestInput(query={"page": "2"}, params={"id": "y"}))
        assert _fields(result) == ["id"]


class TestIssues:
    def test_nested_field_uses_dotted_path(self) -> None:
        schemas = RequestSchemas(body=_NestedBody)
        result = validate_input(schemas, RequestInput(body={"name": "a", "profile": {"age": -1}}))
        assert _fields(result) == ["profile.age"]

    def test_missing_body_reported_against_part(self) -> None:
        result = validate_input(RequestSchemas(body=LoginBody), RequestInput(body=None))
        assert _fields(result) == ["body"]

    def test_unknown_field_rejected(self) -> None:
        body = {"email": "ana@x.com", "password": "secret1", "role": "admin"}
        result = validate_input(RequestSchemas(body=LoginBody), RequestInput(body=body))
        assert isinstance(result, Err)
        assert _fields(result) == ["role"]

    def test_format_issues_empty_loc(self) -> None:
        issues = format_issues([{"loc": (), "msg": "bad"}], "query")
        assert issues[0].field == "query"
        assert issues[0].message == "bad"


class TestCoercion:
    def test_validated_parts_are_replaced_with_models(self) -> None:
        schemas = RequestSchemas(body=SignupBody, query=_PageQuery)
        body = {"username": "  ana  ", "email": "Ana@X.com", "password": "secret1"}
        result = validate_input(schemas, RequestInput(body=body, query={"page": "3"}))
        assert isinstance(result, Ok)
        assert result.value.body.username == "ana"
        assert result.value.body.email == "ana@x.com"
        assert result.value.query.page == 3

    def test_parts_without_schema_pass_through(self) -> None:
        result = validate_input(RequestSchemas(), RequestInput(body={"anything": 1}, query={"q": "x"}))
        assert result.unwrap().body == {"anything": 1}
        assert result.unwrap().query == {"q": "x"}
