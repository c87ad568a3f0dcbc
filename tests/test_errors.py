import pytest

from storymint.core.errors import ErrorKind, ServiceError, is_retryable, not_found, validation_error


@pytest.mark.parametrize(
    "kind, status_code, retryable",
    [
        (ErrorKind.VALIDATION, 400, False),
        (ErrorKind.UNAUTHORIZED, 401, False),
        (ErrorKind.NOT_FOUND, 404, False),
        (ErrorKind.CONFLICT, 409, False),
        (ErrorKind.TRANSIENT, 503, True),
        (ErrorKind.ON_CHAIN_REVERTED, 502, False),
        (ErrorKind.INTERNAL, 500, True),
    ],
)
def test_kind_classification(kind, status_code, retryable):
    error = ServiceError(kind, "boom")
    assert error.status_code == status_code
    assert error.retryable is retryable
    assert is_retryable(error) is retryable


def test_unclassified_exceptions_are_retryable():
    assert is_retryable(RuntimeError("socket closed")) is True


def test_helpers():
    error = validation_error("bad", details={"field": "nftId"})
    assert error.kind == ErrorKind.VALIDATION
    assert error.details == {"field": "nftId"}
    assert str(not_found("missing")) == "missing"
