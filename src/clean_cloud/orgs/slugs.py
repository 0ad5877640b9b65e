"""Organization slug rules.

A slug becomes the leftmost label of the tunnel hostname, so it must be a
valid DNS label: 3-63 chars of lowercase alphanumerics and hyphens, starting
and ending with an alphanumeric.
"""

import re

RESERVED_SLUGS = frozenset({
    "www", "api", "app", "admin", "dashboard", "mail", "status",
    "docs", "blog", "cdn", "staging", "dev", "test", "support",
    "help", "billing", "auth", "login", "signup", "clean",
})

SLUG_PATTERN = r"^[a-z0-9]([a-z0-9-]*[a-z0-9])?$"
_SLUG_RE = re.compile(SLUG_PATTERN)


def generate_slug(name: str) -> str:
    """Derive a valid slug from an organization name."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    if len(slug) < 3:
        slug = f"{slug}-org" if slug else "org"
    if len(slug) > 63:
        slug = slug[:63].rstrip("-")
    return slug


def validate_slug(slug: str) -> str | None:
    """Return None if ``slug`` is acceptable, else a human-readable reason."""
    if len(slug) < 3:
        return "Slug must be at least 3 characters"
    if len(slug) > 63:
        return "Slug must be at most 63 characters"
    if not slug[0].isalnum() or not slug[0].isascii():
        return "Slug must start with a letter or number"
    if not slug[-1].isalnum() or not slug[-1].isascii():
        return "Slug must end with a letter or number"
    if not _SLUG_RE.match(slug):
        return "Slug can only contain lowercase letters, numbers, and hyphens"
    if slug in RESERVED_SLUGS:
        return f'"{slug}" is reserved and cannot be used'
    return None
