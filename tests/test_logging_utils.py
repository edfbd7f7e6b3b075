import logging

from invoicer.logging_utils import REDACTED, RedactingFilter, redact_dict, redact_secrets


def test_redacts_stripe_credentials() -> None:
    text = "auth failed for sk_test_51Habcdefgh12345 with whsec_abcdefgh123"
    redacted = redact_secrets(text)
    assert "51Habcdefgh12345" not in redacted
    assert "abcdefgh123" not in redacted
    assert redacted.startswith("auth failed for sk_test_")


def test_redacts_database_password() -> None:
    assert redact_secrets("postgresql://app:hunter22@db:5432/invoicer") == f"postgresql://app:{REDACTED}@db:5432/invoicer"


def test_redact_dict_masks_sensitive_keys() -> None:
    data = {
        "customer": "cus_1",
        "metadata": {"api_key": "abc", "note": "Bearer abcdefghijklmnopqrstu"},
        "lines": [{"client_secret": "pi_secret"}],
    }
    redacted = redact_dict(data)
    assert redacted["customer"] == "cus_1"
    assert redacted["metadata"]["api_key"] == REDACTED
    assert redacted["metadata"]["note"] == f"Bearer {REDACTED}"
    assert redacted["lines"][0]["client_secret"] == REDACTED


def test_filter_scrubs_log_arguments() -> None:
    record = logging.LogRecord("x", logging.ERROR, __file__, 1, "Stripe said %s", ("bad key sk_live_abcdefghijk",), None)
    assert RedactingFilter().filter(record) is True
    assert "abcdefghijk" not in record.getMessage()
