# backend/tests/unit/test_validators.py
import pytest

from regdesk.services.validators import (
    VALIDATORS,
    run_validator,
    validate_account_number,
    validate_account_type,
    validate_address,
    validate_bank_name,
    validate_currency,
    validate_date,
    validate_email,
    validate_national_id,
    validate_phone,
    validate_share_capital,
    validate_text,
    validate_yes_no,
)


@pytest.mark.parametrize("raw, expected", [
    ("63-123456-A-42", "63-123456-A-42"),
    ("  63-123456-a-42 ", "63-123456-A-42"),
])
def test_national_id_accepts_and_normalizes(raw, expected):
    result = validate_national_id(raw)
    assert result["is_valid"] is True
    assert result["value"] == expected


@pytest.mark.parametrize("raw", ["", "63123456A42", "6-123456-A-42", "63-12345-A-42", "63-123456-AB-42", "63-123456-4-42"])
def test_national_id_rejects_wrong_shape(raw):
    result = validate_national_id(raw)
    assert result["is_valid"] is False
    assert result["value"] is None
    assert result["error_code"] == "INVALID_NATIONAL_ID"
    assert "00-000000-A-00" in result["message"]


def test_email_is_lowercased():
    result = validate_email("  Info@Acme.CO.ZW ")
    assert result["is_valid"] is True
    assert result["value"] == "info@acme.co.zw"


@pytest.mark.parametrize("raw", ["", "info@acme", "info acme@x.com", "@acme.com", "info@.com"])
def test_email_rejects_malformed(raw):
    assert validate_email(raw)["is_valid"] is False


@pytest.mark.parametrize("raw, expected", [
    ("0771234567", "+263771234567"),
    ("+263 77 123 4567", "+263771234567"),
    ("086-123-4567", "+263861234567"),
    ("(0712) 345 678", "+263712345678"),
])
def test_phone_accepts_local_and_international_forms(raw, expected):
    result = validate_phone(raw)
    assert result["is_valid"] is True
    assert result["value"] == expected


@pytest.mark.parametrize("raw", ["", "0701234567", "0771234", "+27771234567", "07712345678", "phone"])
def test_phone_rejects_unknown_prefixes_and_lengths(raw):
    assert validate_phone(raw)["is_valid"] is False


def test_currency_strips_symbols_and_formats():
    assert validate_currency("$1,250.5")["value"] == "USD 1250.50"
    assert validate_currency("USD 0")["value"] == "USD 0.00"


@pytest.mark.parametrize("raw", ["", "abc", "-50", "1.2.3", "."])
def test_currency_never_coerces_garbage_to_zero(raw):
    result = validate_currency(raw)
    assert result["is_valid"] is False
    assert result["error_code"] == "INVALID_AMOUNT"


def test_share_capital_enforces_minimum():
    assert validate_share_capital("1")["value"] == "USD 1.00"
    too_low = validate_share_capital("0.50")
    assert too_low["is_valid"] is False
    assert too_low["error_code"] == "SHARE_CAPITAL_TOO_LOW"
    assert validate_share_capital("none")["error_code"] == "INVALID_AMOUNT"


def test_address_collapses_lines():
    result = validate_address("  12 Samora Machel Ave \n\n  Harare   CBD \n Zimbabwe")
    assert result["value"] == "12 Samora Machel Ave, Harare CBD, Zimbabwe"


def test_free_text_is_whitespace_normalized():
    assert validate_text("  General    consulting\nservices ")["value"] == "General consulting services"
    assert validate_text(" ")["is_valid"] is False


def test_date_requires_iso_format():
    assert validate_date("2015-03-01")["value"] == "2015-03-01"
    assert validate_date("01/03/2015")["is_valid"] is False
    assert validate_date("2015-02-30")["is_valid"] is False


def test_yes_no_choices():
    assert validate_yes_no("YES")["value"] == "Yes"
    assert validate_yes_no("2")["value"] == "No"
    assert validate_yes_no("maybe")["is_valid"] is False


def test_account_number_digits_only():
    assert validate_account_number("1234 5678-90")["value"] == "1234567890"
    assert validate_account_number("1234567")["is_valid"] is False
    assert validate_account_number("1234567A")["is_valid"] is False


def test_choices_by_number_or_name():
    assert validate_account_type("1")["value"] == "Current Account"
    assert validate_account_type("savings")["value"] == "Savings Account"
    assert validate_account_type("9")["is_valid"] is False
    assert validate_bank_name("stanbic")["value"] == "Stanbic Bank"
    assert validate_bank_name("0")["is_valid"] is False


def test_registry_runs_named_validator():
    assert set(VALIDATORS) >= {"national_id", "email", "phone", "currency", "share_capital", "address", "text"}
    assert run_validator("email", "A@B.CO")["value"] == "a@b.co"
    with pytest.raises(KeyError):
        run_validator("unknown", "x")
