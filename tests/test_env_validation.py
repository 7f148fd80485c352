import pytest

from env_validation import EnvironmentError, get_env_bool, get_env_float, validate_environment


def test_defaults_are_applied(monkeypatch):
    for name in ("DEFAULT_PASSING_SCORE", "CONTENT_LOOKUP_TIMEOUT", "RECOMMENDATION_PIPELINE_ENABLED"):
        monkeypatch.delenv(name, raising=False)
    validate_environment()
    assert get_env_float("DEFAULT_PASSING_SCORE", 0) == 70
    assert get_env_float("CONTENT_LOOKUP_TIMEOUT", 0) == 2.0
    assert get_env_bool("RECOMMENDATION_PIPELINE_ENABLED") is True


def test_out_of_range_passing_score(monkeypatch):
    monkeypatch.setenv("DEFAULT_PASSING_SCORE", "120")
    with pytest.raises(EnvironmentError):
        validate_environment()


def test_malformed_float(monkeypatch):
    monkeypatch.setenv("CONTENT_LOOKUP_TIMEOUT", "soon")
    with pytest.raises(EnvironmentError):
        get_env_float("CONTENT_LOOKUP_TIMEOUT", 2.0)


@pytest.mark.parametrize("raw, expected", [("1", True), ("on", True), ("false", False), ("0", False)])
def test_env_bool(monkeypatch, raw, expected):
    monkeypatch.setenv("RECOMMENDATION_PIPELINE_ENABLED", raw)
    assert get_env_bool("RECOMMENDATION_PIPELINE_ENABLED", not expected) is expected


def test_missing_internal_key_only_warns(monkeypatch, caplog):
    monkeypatch.delenv("INTERNAL_API_KEY", raising=False)
    with caplog.at_level("WARNING"):
        validate_environment()
    assert "INTERNAL_API_KEY" in caplog.text
