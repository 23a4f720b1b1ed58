"""
Ukrainian phone number utilities.

Numbers are accepted as 0XXXXXXXXX, 380XXXXXXXXX, +380XXXXXXXXX or the bare
9 national digits, and stored as +380XXXXXXXXX. Every action that accepts a
phone goes through normalize_ua_phone / is_valid_ua_phone.
"""

from __future__ import annotations

import re
from typing import Optional

UA_PHONE_RE = re.compile(r"^\+380\d{9}$")
_SEPARATORS_RE = re.compile(r"[\s()\-]")
# Only digits, separators and one leading "+" can form a phone.
_PHONE_CHARS_RE = re.compile(r"^\+?[\d\s()\-]+$")

# A message that is nothing but a phone number (used by the continuation heuristic).
PHONE_ONLY_RE = re.compile(r"^\+?[\d\s()\-]{9,20}$")


def normalize_ua_phone(phone: Optional[str]) -> str:
    """Normalize input to +380XXXXXXXXX. Returns '' for empty input.

    Foreign numbers (a "+" prefix other than +380) are returned unchanged so
    that validation rejects them instead of silently rewriting them.

    Examples:
        >>> normalize_ua_phone("067 123 45 67")
        '+380671234567'
        >>> normalize_ua_phone("380671234567")
        '+380671234567'
    """
    n = _SEPARATORS_RE.sub("", str(phone or "")).strip()
    if not n:
        return ""
    if n.startswith("+"):
        return n
    if n.startswith("380"):
        return "+" + n
    if n.startswith("0"):
        return "+380" + re.sub(r"\D", "", n[1:])
    return "+380" + re.sub(r"\D", "", n)


def is_valid_ua_phone(phone: Optional[str]) -> bool:
    """True when the input is phone-shaped and normalizes to +380 followed by exactly 9 digits."""
    text = str(phone or "").strip()
    if not _PHONE_CHARS_RE.match(text):
        return False
    return bool(UA_PHONE_RE.match(normalize_ua_phone(text)))


def phone_digits(phone: Optional[str]) -> str:
    """Digits only, for comparisons: 380XXXXXXXXX."""
    return re.sub(r"\D", "", normalize_ua_phone(phone))


def format_ua_phone_display(phone: Optional[str]) -> str:
    """+380671234567 -> 067 123 45 67 (unchanged when invalid)."""
    n = normalize_ua_phone(phone)
    if not UA_PHONE_RE.match(n):
        return phone or ""
    return f"0{n[4:6]} {n[6:9]} {n[9:11]} {n[11:13]}"


def is_phone_only_message(text: Optional[str]) -> bool:
    """True when the whole message is a single valid Ukrainian phone number."""
    t = (text or "").strip()
    if not t or not PHONE_ONLY_RE.match(t):
        return False
    return is_valid_ua_phone(t)


def last4(phone: Optional[str]) -> str:
    return re.sub(r"\D", "", phone or "")[-4:]
