"""
Email address helpers shared by the mailbox reader, the triage engine and
the contact store. The lower-cased address is the join key everywhere.
"""

import re
from email.utils import getaddresses

_ANGLE_ADDRESS = re.compile(r"<([^>]*)>")


def normalize_email(address: str | None) -> str:
    """Lower-case and strip an address; None becomes an empty string."""
    if not address:
        return ""
    return address.strip().lower()


def parse_from_header(header_value: str | None) -> tuple[str, str]:
    """
    Split a From header into (display name, normalized email).

    Handles `"Display Name" <addr@domain>` and bare `addr@domain`. When no
    angle-bracket address is present the whole header value is treated as
    the email, and it doubles as the display name.
    """
    if not header_value or not header_value.strip():
        return "", ""

    value = header_value.strip()
    match = _ANGLE_ADDRESS.search(value)
    if not match:
        return value, normalize_email(value)

    email = normalize_email(match.group(1))
    name = value[: match.start()].strip().strip('"').strip("'").strip()
    return name or email, email


def parse_address_list(header_value: str | None) -> list[tuple[str, str]]:
    """Parse To / Cc recipients into (name, email) pairs; quoted names may contain commas."""
    if not header_value:
        return []

    addresses = []
    for name, address in getaddresses([header_value]):
        email = normalize_email(address)
        if email:
            addresses.append((name.strip() or email, email))
    return addresses
