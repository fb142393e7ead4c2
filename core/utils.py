import copy
import re

from django.conf import settings


_EMAIL_DOMAIN_RE = re.compile(r"@([^@\s]+)$")


def is_email_internal(email) -> bool:
    """
    Return True when the email belongs to one of INTERNAL_EMAIL_DOMAINS
    (subdomains included).
    """
    if not email:
        return False
    match = _EMAIL_DOMAIN_RE.search(email.strip().lower())
    if not match:
        return False
    domain = match.group(1)
    for internal in getattr(settings, "INTERNAL_EMAIL_DOMAINS", []):
        internal = internal.lower().lstrip("@")
        if domain == internal or domain.endswith("." + internal):
            return True
    return False


def deep_merge(base, update):
    """
    Merge two JSON-like mappings and return a new dict.

    Nested dicts are merged key by key. Lists and scalars from ``update``
    replace whatever ``base`` held at that key. Neither input is mutated.
    """
    result = copy.deepcopy(base) if isinstance(base, dict) else {}
    for key, value in (update or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result
