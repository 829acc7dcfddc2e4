"""Phone number normalisation and fuzzy matching."""

import re

_NON_DIGIT = re.compile(r"[^0-9]")

# Shortest shared suffix accepted as the same number
MIN_SUFFIX_DIGITS = 7


def normalize_phone(phone: str) -> str:
    """Strip everything but ASCII digits."""
    return _NON_DIGIT.sub("", phone)


def jid_to_phone(jid: str) -> str:
    return jid.split("@", 1)[0]


def phone_matches(phone1: str, phone2: str) -> bool:
    """True when both numbers are the same up to an optional prefix.

    Exact digit matches always count. Otherwise one number must end with
    the other and the shorter must have at least seven digits, which
    absorbs country-code and trunk-prefix differences.
    """
    n1 = normalize_phone(phone1)
    n2 = normalize_phone(phone2)
    if not n1 or not n2:
        return False
    if n1 == n2:
        return True
    if min(len(n1), len(n2)) < MIN_SUFFIX_DIGITS:
        return False
    return n1.endswith(n2) or n2.endswith(n1)
