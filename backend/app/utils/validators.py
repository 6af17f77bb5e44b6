"""
Validators — Normalisation and format checks for identity attributes and
contact destinations.
"""
import re
from datetime import date, datetime

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y", "%Y/%m/%d")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
_PHONE_RE = re.compile(r"^\+?[0-9]{7,15}$")


def parse_date(value) -> date | None:
    """Parse an ISO or day-first date. Returns None when unparseable."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # Accept full ISO timestamps from date pickers
    if "T" in text:
        text = text.split("T", 1)[0]
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def normalize_identifier(value: str | None) -> str:
    """Trim, drop inner whitespace/hyphens/dots and upper-case an ID number."""
    if not value:
        return ""
    return re.sub(r"[\s\-.]", "", str(value)).upper()


def normalize_phone(phone: str | None) -> str:
    if not phone:
        return ""
    return re.sub(r"[\s\-()]", "", phone.strip())


def validate_email(email: str | None) -> bool:
    if not email:
        return False
    return bool(_EMAIL_RE.match(email.strip()))


def validate_phone(phone: str | None) -> bool:
    """Validate an international phone number: optional +, 7-15 digits."""
    return bool(_PHONE_RE.match(normalize_phone(phone)))


def mask_email(email: str) -> str:
    """Mask an email for display: joh●●●●●@example.com"""
    parts = email.split("@")
    if len(parts) != 2 or not parts[0]:
        return email
    local, domain = parts
    if len(local) <= 3:
        return f"{local[0]}●●●●●@{domain}"
    return f"{local[:3]}●●●●●@{domain}"


def mask_phone(phone: str) -> str:
    """Mask a phone number for display: ●●●●●●1234"""
    if len(phone) <= 4:
        return phone
    return f"●●●●●●{phone[-4:]}"


def mask_identifier(value: str | None) -> str:
    """Keep only the last four characters of an identity number."""
    cleaned = normalize_identifier(value)
    if len(cleaned) <= 4:
        return "●" * len(cleaned)
    return f"{'●' * (len(cleaned) - 4)}{cleaned[-4:]}"
