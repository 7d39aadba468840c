import re

EMAIL_PATTERN = re.compile(r"^[^@\s,]+@[^@\s,]+\.[^@\s,]+$")
ROOM_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]{3,}$")

MIN_HOST_NAME_LENGTH = 2
MIN_DISPLAY_NAME_LENGTH = 2

SENTINEL_VALUES = {"n/a", "na", "none", "null", "undefined", "unknown"}


def normalize_room_name(raw: str | None) -> str:
    """Lowercase and trim a room name. This is the lookup key everywhere."""
    if not raw:
        return ""
    return raw.strip().lower()


def normalize_email(raw: str | None) -> str:
    if not raw:
        return ""
    return raw.strip().lower()


def validate_email(value: str | None) -> str:
    cleaned = normalize_email(value)
    if not cleaned or not EMAIL_PATTERN.match(cleaned):
        return ""
    return cleaned


def validate_room_name(value: str | None) -> str:
    """Return the trimmed display form, or "" when it breaks the naming rule.

    Room names end up in join links and video room identifiers, so only
    letters, digits, underscores and hyphens are allowed.
    """
    if not value:
        return ""
    cleaned = value.strip()
    if not ROOM_NAME_PATTERN.match(cleaned):
        return ""
    return cleaned


def validate_host_name(value: str | None) -> str:
    if not value:
        return ""
    cleaned = value.strip()
    if len(cleaned) < MIN_HOST_NAME_LENGTH:
        return ""
    return cleaned


def validate_display_name(value: str | None) -> str:
    if not value:
        return ""
    cleaned = " ".join(value.split())
    if len(cleaned) < MIN_DISPLAY_NAME_LENGTH:
        return ""
    if cleaned.lower() in SENTINEL_VALUES:
        return ""
    # Reject template variables
    if "{{" in cleaned or "}}" in cleaned:
        return ""
    return cleaned


def parse_client_emails(csv: str | None) -> list[str]:
    """Split a comma-separated email list into normalized addresses.

    Returns [] if any entry is malformed or the list is empty. Repeated
    addresses collapse to the first occurrence so the roster stays unique.
    """
    if not csv or not csv.strip():
        return []
    emails: list[str] = []
    for part in csv.split(","):
        email = validate_email(part)
        if not email:
            return []
        if email not in emails:
            emails.append(email)
    return emails


def is_positive_minutes(value) -> bool:
    # bool is an int subclass; True must not read as "1 minute"
    return isinstance(value, int) and not isinstance(value, bool) and value > 0
