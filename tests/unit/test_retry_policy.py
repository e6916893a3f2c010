import pytest

from deploymesh.config.policy import ErrorClass, RetryPolicy, classify_error_code, resolve_parallelism
from deploymesh.core.errors import PermanentProviderError, ProviderError, TransientProviderError


@pytest.mark.parametrize(
    "code, expected",
    [
        ("throttled", ErrorClass.TRANSIENT),
        ("TooManyRequests", ErrorClass.TRANSIENT),
        ("timeout", ErrorClass.TRANSIENT),
        ("transient", ErrorClass.TRANSIENT),
        ("forbidden", ErrorClass.PERMANENT),
        ("validation", ErrorClass.PERMANENT),
        ("something_new", ErrorClass.PERMANENT),
        (None, ErrorClass.PERMANENT),
    ],
)
def test_classify_error_code(code, expected):
    assert classify_error_code(code) is expected


def test_provider_error_classes():
    assert TransientProviderError("x").transient
    assert not PermanentProviderError("x", code="throttled").transient
    assert ProviderError("x", code="unavailable").transient
    assert not ProviderError("x").transient
    assert ProviderError("x", error_class=ErrorClass.TRANSIENT).transient


def test_error_context_is_rendered():
    error = PermanentProviderError("denied", code="forbidden", context={"resource": "kv"})
    assert str(error) == "denied (resource=kv)"
    assert error.code == "forbidden"


def test_backoff_is_exponential_and_capped():
    policy = RetryPolicy(max_attempts=6, backoff_base=0.5, backoff_max=3.0)

    assert [policy.delay(attempt) for attempt in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]
    assert policy.delay(0) == 0.0
    assert policy.should_retry(5)
    assert not policy.should_retry(6)


def test_retry_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(multiplier=0.5)


def test_resolve_parallelism(monkeypatch):
    assert resolve_parallelism(None, default=4) == (4, None)
    assert resolve_parallelism(3) == (3, "value=3")
    assert resolve_parallelism("0", default=2)[0] == 2
    assert resolve_parallelism("many", default=2)[0] == 2

    monkeypatch.setenv("DM_WORKERS", "12")
    assert resolve_parallelism("env:DM_WORKERS") == (12, 'env:DM_WORKERS="12"')
    monkeypatch.delenv("DM_WORKERS")
    value, hint = resolve_parallelism("env:DM_WORKERS", default=5)
    assert value == 5
    assert "not set" in hint
