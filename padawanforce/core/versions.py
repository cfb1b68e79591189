"""Dotted numeric version ordering.

Parsing is deliberately lenient: a component that is empty or not a
non-negative integer counts as 0, so ``compare_versions`` never raises.
Text such as a raw tag name therefore compares like ``0.0.0``; use
``is_release_version`` before trusting a string as a version.
"""

from packaging.version import Version, InvalidVersion


def _strip(text: str) -> str:
    return text.strip().lstrip('vV').strip()


def parse_version(text: str) -> tuple[int, ...]:
    """Split ``text`` on dots into integers, unparseable parts become 0."""
    parts = []
    for part in _strip(text).split('.'):
        part = part.strip()
        parts.append(int(part) if part.isascii() and part.isdigit() else 0)
    return tuple(parts)


def compare_versions(a: str, b: str) -> int:
    """Return -1, 0 or 1 as ``a`` is older than, equal to or newer than ``b``.

    The shorter version is padded with zeros, so "1.2" == "1.2.0".
    """
    pa, pb = parse_version(a), parse_version(b)
    width = max(len(pa), len(pb))
    pa += (0,) * (width - len(pa))
    pb += (0,) * (width - len(pb))
    if pa < pb:
        return -1
    if pa > pb:
        return 1
    return 0


def is_release_version(text: str | None) -> bool:
    """True if ``text`` is a plain numeric release like ``v1.4.0``."""
    if not text:
        return False
    try:
        version = Version(_strip(text))
    except InvalidVersion:
        return False
    return not (version.is_prerelease or version.is_postrelease
                or version.local or version.epoch)
