"""
Tests for Result Pattern Implementation
"""

import pytest
from services.common.result import ErrorCode, Result, PagedResult
from services.exceptions import NotFoundError, RuleParseError


class TestResultPattern:

    def test_success_result(self):
        result = Result.success({"id": 1, "name": "Repeat buyers"})

        assert result.is_success is True
        assert result.is_failure is False
        assert result.data["name"] == "Repeat buyers"
        assert result.code is None
        assert bool(result) is True

    def test_failure_result(self):
        result = Result.failure("Campaign 7 not found", code=ErrorCode.NOT_FOUND)

        assert result.is_failure is True
        assert result.data is None
        assert result.error == "Campaign 7 not found"
        assert result.code == ErrorCode.NOT_FOUND
        assert bool(result) is False

    @pytest.mark.parametrize('exc,code', [
        (NotFoundError('Segment', 3), ErrorCode.NOT_FOUND),
        (RuleParseError("Unknown combinator: xor"), ErrorCode.VALIDATION_ERROR),
        (RuntimeError("boom"), ErrorCode.INTERNAL_ERROR),
    ])
    def test_from_exception_keeps_code(self, exc, code):
        result = Result.from_exception(exc)

        assert result.code == code
        assert result.error == str(exc)

    def test_unwrap(self):
        assert Result.success([1, 2]).unwrap() == [1, 2]

        with pytest.raises(ValueError, match="Cannot unwrap a failure result"):
            Result.failure("Error occurred").unwrap()

    def test_unwrap_or(self):
        assert Result.success("data").unwrap_or("default") == "data"
        assert Result.failure("Error").unwrap_or("default") == "default"

    def test_map(self):
        assert Result.success(5).map(lambda x: x * 2).data == 10

        failed = Result.failure("Error", code=ErrorCode.CONFLICT).map(lambda x: x * 2)
        assert failed.is_failure
        assert failed.code == ErrorCode.CONFLICT

    def test_repr(self):
        assert "Result.success" in repr(Result.success("data"))
        assert "code='SYSTEM_SEGMENT'" in repr(Result.failure("error", code=ErrorCode.SYSTEM_SEGMENT))


class TestPagedResult:

    @pytest.mark.parametrize('total,per_page,pages', [
        (100, 5, 20),
        (3, 10, 1),
        (0, 10, 0),
        (41, 20, 3),
    ])
    def test_total_pages(self, total, per_page, pages):
        result = PagedResult.paginated(data=[], total=total, page=1, per_page=per_page)

        assert result.is_success
        assert result.total_pages == pages

    def test_pagination_uses_api_names(self):
        result = PagedResult.paginated(data=['a', 'b'], total=50, page=2, per_page=2)

        assert result.pagination() == {'total': 50, 'page': 2, 'perPage': 2, 'totalPages': 25}
