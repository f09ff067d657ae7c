"""
Version Compare
Orders extension version strings
"""

import re

_VERSION_PATTERN = re.compile(r'^\d+(\.\d+){1,3}$')


def _parse_version(version):
    """Parse a dotted numeric version into a comparable tuple.

    Accepts two to four components. Missing trailing components become -1 so
    that "1.0" sorts before "1.0.0".

    Raises:
        ValueError - if the string is not a dotted numeric version
    """
    if not _VERSION_PATTERN.match(version):
        raise ValueError(f'Not a numeric version: {version!r}')
    parts = [int(part) for part in version.split('.')]
    return tuple(parts + [-1] * (4 - len(parts)))


def _sign(a, b):
    return (a > b) - (a < b)


def compare_versions(a, b):
    """Compare two version strings.

    Empty versions sort before any non-empty version. Dotted numeric versions
    are compared component by component; if either side does not parse the
    comparison falls back to ordinal string order, so "beta" < "rc".

    Args:
        a: str - Left version
        b: str - Right version

    Returns:
        int - -1, 0 or 1
    """
    if not a and not b:
        return 0
    if not a:
        return -1
    if not b:
        return 1

    try:
        parsed_a = _parse_version(a)
        parsed_b = _parse_version(b)
    except ValueError:
        return _sign(a, b)
    return _sign(parsed_a, parsed_b)


def is_version_newer(remote, local):
    """Check whether a remote version is strictly newer than the installed one.

    Only numeric versions count; anything unparsable reports no update.
    """
    if not remote or not local:
        return False
    try:
        return _parse_version(remote) > _parse_version(local)
    except ValueError:
        return False
