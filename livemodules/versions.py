"""Semantic version checks backed by node-semver.

Ranges follow the npm grammar (``^1.2.0``, ``~1.2``, ``1.x``, ``1.0 - 2.0``,
``>=1 <2 || 3``). Matching keeps npm's pre-release rule: ``1.3.0-beta.1``
only satisfies a range whose comparator set mentions a pre-release of
``1.3.0`` itself.
"""

from collections.abc import Iterable
from functools import cmp_to_key

import nodesemver

LOOSE = True


def is_valid_version(version: str | None) -> bool:
    if not isinstance(version, str) or not version:
        return False
    try:
        return nodesemver.parse(version, LOOSE) is not None
    except ValueError:
        return False


def is_valid_range(range_: str | None) -> bool:
    if not isinstance(range_, str) or not range_.strip():
        return False
    try:
        return nodesemver.valid_range(range_, LOOSE) is not None
    except ValueError:
        return False


def satisfies(version: str, range_: str) -> bool:
    """Check ``version`` against ``range_``; invalid versions never satisfy."""
    if not is_valid_version(version):
        return False
    return bool(nodesemver.satisfies(version, range_, LOOSE))


def compare(a: str, b: str) -> int:
    return nodesemver.compare(a, b, LOOSE)


def sort_versions(versions: Iterable[str | None]) -> list[str]:
    """Sort the valid entries of ``versions`` in ascending order."""
    valid = [v for v in versions if is_valid_version(v)]
    return sorted(valid, key=cmp_to_key(compare))


def max_satisfying(versions: Iterable[str | None], range_: str) -> str | None:
    """Return the highest version in ``versions`` satisfying ``range_``."""
    candidates = [v for v in sort_versions(versions) if satisfies(v, range_)]
    return candidates[-1] if candidates else None
