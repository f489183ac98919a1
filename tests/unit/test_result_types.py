"""Unit tests for Ok/Err result values."""

import pytest
from beartype import beartype
from beartype.roar import BeartypeCallHintReturnViolation

from mcp_authz.core.result_types import Err, Ok, Result


class TestOk:
    """Test the success wrapper."""

    def test_accessors(self) -> None:
        """Test that Ok exposes its value and reports success."""
        result = Ok(42)

        assert result.is_ok()
        assert not result.is_err()
        assert result.unwrap() == 42
        assert result.unwrap_or(0) == 42

    def test_unwrap_err_raises(self) -> None:
        """Test that unwrapping an error from Ok fails loudly."""
        with pytest.raises(ValueError, match="unwrap_err on Ok"):
            Ok("value").unwrap_err()

    def test_map_transforms_value(self) -> None:
        """Test that map applies the function to the success value."""
        assert Ok(2).map(lambda v: v * 10) == Ok(20)


class TestErr:
    """Test the error wrapper."""

    def test_accessors(self) -> None:
        """Test that Err exposes its error and reports failure."""
        result = Err("boom")

        assert result.is_err()
        assert not result.is_ok()
        assert result.unwrap_err() == "boom"
        assert result.unwrap_or("fallback") == "fallback"

    def test_unwrap_raises(self) -> None:
        """Test that unwrapping a value from Err fails loudly."""
        with pytest.raises(ValueError, match="boom"):
            Err("boom").unwrap()

    def test_map_is_noop(self) -> None:
        """Test that map leaves an error untouched."""
        error = Err("boom")
        assert error.map(lambda v: v * 10) is error


class TestResultFactory:
    """Test the Result helpers."""

    def test_factory_methods(self) -> None:
        """Test Result.ok and Result.err build the matching wrapper."""
        assert Result.ok(1) == Ok(1)
        assert Result.err("e") == Err("e")

    def test_subscription_is_accepted_by_beartype(self) -> None:
        """Test that Result[T, E] annotations are checked at runtime."""

        @beartype
        def parse(raw: str) -> Result[int, str]:
            if raw.isdigit():
                return Ok(int(raw))
            return Err(f"not a number: {raw}")

        assert parse("7") == Ok(7)
        assert parse("x").is_err()

    def test_beartype_rejects_non_result(self) -> None:
        """Test that returning a bare value violates the annotation."""

        @beartype
        def broken() -> Result[int, str]:
            return 7  # type: ignore[return-value]

        with pytest.raises(BeartypeCallHintReturnViolation):
            broken()
