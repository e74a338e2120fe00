from chainindex.core.sanitize import (
    REDACTED,
    mask_value,
    sanitize_for_logging,
    sanitize_headers,
    sanitize_sensitive_data,
)


def test_credentials_are_redacted_recursively():
    data = {
        "host": "db.example.com",
        "password": "hunter2",
        "nested": {"authHeader": "Bearer abc", "items": [{"api_key": "k"}]},
    }

    safe = sanitize_sensitive_data(data)

    assert safe["host"] == "db.example.com"
    assert safe["password"] == REDACTED
    assert safe["nested"]["authHeader"] == REDACTED
    assert safe["nested"]["items"][0]["api_key"] == REDACTED
    assert data["password"] == "hunter2"


def test_domain_token_fields_are_kept():
    data = {"token": "So11111111111111111111111111111111111111112", "tokens": ["A", "B"]}

    assert sanitize_sensitive_data(data) == data


def test_secret_looking_values_are_redacted_under_innocent_keys():
    data = {
        "dsn": "postgresql://indexer:hunter2@db:5432/chain",
        "info": "host=db password=hunter2",
        "header": "Bearer abc.def",
    }

    assert set(sanitize_sensitive_data(data).values()) == {REDACTED}


def test_additional_keys():
    assert sanitize_sensitive_data({"pin": "1234"}, additional_keys={"PIN"}) == {"pin": REDACTED}


def test_sanitize_headers():
    headers = {"Authorization": "Bearer secret", "Content-Type": "application/json", "X-Api-Key": "k"}

    safe = sanitize_headers(headers)

    assert safe == {"Authorization": REDACTED, "Content-Type": "application/json", "X-Api-Key": REDACTED}


def test_sanitize_for_logging_truncates():
    text = sanitize_for_logging({"password": "hunter2", "blob": "x" * 5000}, max_length=100)

    assert "hunter2" not in text
    assert len(text) == 100
    assert text.endswith("...")


def test_mask_value():
    assert mask_value("") == ""
    assert mask_value("short") == REDACTED
    assert mask_value("a-long-secret-value") == "a-...ue"
