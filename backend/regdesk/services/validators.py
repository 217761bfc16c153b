# /regdesk/services/validators.py

"""
Field validators for the intake flows.

Every validator takes the raw text the sender typed and returns a
FieldCheck. When ``is_valid`` is True, ``value`` holds the canonical form
that gets stored in the session; otherwise ``message`` is shown to the
sender above the repeated prompt.

All validators are pure: no I/O, no clock, no logging.
"""

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, TypedDict


class FieldCheck(TypedDict):
    """Result of validating one raw field value."""
    is_valid: bool
    value: Optional[str]
    error_code: Optional[str]
    message: Optional[str]


NATIONAL_ID_PATTERN = re.compile(r"^\d{2}-\d{6}-[A-Z]-\d{2}$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^(\+263|0)(7[1-9]|8[6-9])\d{7}$")

ACCOUNT_TYPES: List[str] = [
    "Current Account",
    "Savings Account",
    "Business Account",
    "Corporate Account",
]

BANKS: List[str] = [
    "CBZ Bank",
    "Stanbic Bank",
    "Standard Chartered Bank",
    "CABS",
    "Steward Bank",
    "FBC Bank",
    "NMB Bank",
    "ZB Bank",
    "Agribank",
    "People's Own Savings Bank",
    "Other",
]

MIN_SHARE_CAPITAL = Decimal("1")
MIN_ACCOUNT_NUMBER_DIGITS = 8


def _ok(value: str) -> FieldCheck:
    return {"is_valid": True, "value": value, "error_code": None, "message": None}


def _fail(error_code: str, message: str) -> FieldCheck:
    return {"is_valid": False, "value": None, "error_code": error_code, "message": message}


def normalize_whitespace(raw: str) -> str:
    return " ".join((raw or "").split())


def validate_national_id(raw: str) -> FieldCheck:
    """National ID in the form NN-NNNNNN-A-NN, e.g. 63-123456-A-42."""
    candidate = (raw or "").strip().upper().replace(" ", "")
    if not NATIONAL_ID_PATTERN.match(candidate):
        return _fail(
            "INVALID_NATIONAL_ID",
            "Please provide a valid ID number in the format 00-000000-A-00 (e.g. 63-123456-A-42).",
        )
    return _ok(candidate)


def validate_email(raw: str) -> FieldCheck:
    candidate = (raw or "").strip().lower()
    if not EMAIL_PATTERN.match(candidate):
        return _fail("INVALID_EMAIL", "Please provide a valid email address (e.g. example@company.com).")
    return _ok(candidate)


def validate_phone(raw: str) -> FieldCheck:
    """
    Local mobile numbers starting with +263 or 0 and a recognised network
    prefix. Spaces, dashes and brackets are ignored. The stored form is
    always the international one (+263...).
    """
    candidate = re.sub(r"[\s\-()]", "", raw or "")
    if not PHONE_PATTERN.match(candidate):
        return _fail(
            "INVALID_PHONE",
            "Please provide a valid mobile number (e.g. 0771234567 or +263771234567).",
        )
    if candidate.startswith("0"):
        candidate = "+263" + candidate[1:]
    return _ok(candidate)


def _parse_amount(raw: str) -> Optional[Decimal]:
    text = (raw or "").strip()
    if text.startswith("-"):
        return None
    digits = re.sub(r"[^\d.]", "", text)
    if not digits or not any(ch.isdigit() for ch in digits):
        return None
    try:
        amount = Decimal(digits)
    except InvalidOperation:
        return None
    if amount < 0:
        return None
    return amount


def format_currency(amount: Decimal) -> str:
    return f"USD {amount.quantize(Decimal('0.01'))}"


def validate_currency(raw: str) -> FieldCheck:
    amount = _parse_amount(raw)
    if amount is None:
        return _fail("INVALID_AMOUNT", "Please provide a valid amount using numbers only (e.g. 1000 or 1000.50).")
    return _ok(format_currency(amount))


def validate_share_capital(raw: str) -> FieldCheck:
    amount = _parse_amount(raw)
    if amount is None:
        return _fail("INVALID_AMOUNT", "Please provide a valid share capital amount using numbers only (e.g. 100).")
    if amount < MIN_SHARE_CAPITAL:
        return _fail("SHARE_CAPITAL_TOO_LOW", "Share capital must be at least USD 1.00.")
    return _ok(format_currency(amount))


def validate_address(raw: str) -> FieldCheck:
    lines = [normalize_whitespace(line) for line in (raw or "").splitlines()]
    candidate = ", ".join(line for line in lines if line)
    if len(candidate) < 5:
        return _fail("INVALID_ADDRESS", "Please provide a complete physical address.")
    return _ok(candidate)


def validate_text(raw: str) -> FieldCheck:
    candidate = normalize_whitespace(raw)
    if len(candidate) < 2:
        return _fail("TEXT_TOO_SHORT", "This answer seems too short. Please provide more detail.")
    return _ok(candidate)


def validate_name(raw: str) -> FieldCheck:
    candidate = normalize_whitespace(raw)
    if len(candidate) < 2 or not any(ch.isalpha() for ch in candidate):
        return _fail("INVALID_NAME", "Please provide a valid full name.")
    return _ok(candidate)


def validate_company_name(raw: str) -> FieldCheck:
    candidate = normalize_whitespace(raw)
    if len(candidate) < 3:
        return _fail("COMPANY_NAME_TOO_SHORT", "Company name seems too short. Please provide a valid company name.")
    return _ok(candidate)


def validate_date(raw: str) -> FieldCheck:
    candidate = (raw or "").strip()
    try:
        parsed = datetime.strptime(candidate, "%Y-%m-%d")
    except ValueError:
        return _fail("INVALID_DATE", "Please provide a valid date in YYYY-MM-DD format.")
    return _ok(parsed.strftime("%Y-%m-%d"))


def validate_yes_no(raw: str) -> FieldCheck:
    candidate = (raw or "").strip().lower()
    if candidate in ("yes", "y", "1"):
        return _ok("Yes")
    if candidate in ("no", "n", "2"):
        return _ok("No")
    return _fail("INVALID_YES_NO", "Please reply YES (1) or NO (2).")


def validate_account_number(raw: str) -> FieldCheck:
    candidate = re.sub(r"[\s\-]", "", raw or "")
    if not candidate.isdigit() or len(candidate) < MIN_ACCOUNT_NUMBER_DIGITS:
        return _fail(
            "INVALID_ACCOUNT_NUMBER",
            f"Please provide a valid account number (minimum {MIN_ACCOUNT_NUMBER_DIGITS} digits, numbers only).",
        )
    return _ok(candidate)


def _choice(raw: str, options: List[str]) -> Optional[str]:
    """Resolves a 1-based number or a case-insensitive (partial) name to one of ``options``."""
    candidate = normalize_whitespace(raw).lower()
    if not candidate:
        return None
    if candidate.isdigit():
        index = int(candidate) - 1
        return options[index] if 0 <= index < len(options) else None
    for option in options:
        if candidate == option.lower():
            return option
    for option in options:
        if candidate in option.lower():
            return option
    return None


def numbered_list(options: List[str]) -> str:
    return "\n".join(f"{i}. {option}" for i, option in enumerate(options, start=1))


def validate_bank_name(raw: str) -> FieldCheck:
    selected = _choice(raw, BANKS)
    if selected is None:
        return _fail("INVALID_BANK", "Invalid bank selection. Please choose a number from the list.")
    return _ok(selected)


def validate_account_type(raw: str) -> FieldCheck:
    selected = _choice(raw, ACCOUNT_TYPES)
    if selected is None:
        return _fail("INVALID_ACCOUNT_TYPE", "Invalid account type selection. Please choose a number from the list.")
    return _ok(selected)


VALIDATORS: Dict[str, Callable[[str], FieldCheck]] = {
    "national_id": validate_national_id,
    "email": validate_email,
    "phone": validate_phone,
    "currency": validate_currency,
    "share_capital": validate_share_capital,
    "address": validate_address,
    "text": validate_text,
    "name": validate_name,
    "company_name": validate_company_name,
    "date": validate_date,
    "yes_no": validate_yes_no,
    "account_number": validate_account_number,
    "bank_name": validate_bank_name,
    "account_type": validate_account_type,
}


def run_validator(name: str, raw: str) -> FieldCheck:
    """Runs a registered validator. Unknown names are a flow-definition bug and raise KeyError."""
    return VALIDATORS[name](raw)
