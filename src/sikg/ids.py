"""Content-addressed node identifiers.

Ids are ``<kind>_<md5 hex>`` over ``"<kind>:<name>:<normalized path>"``.  The
same logical entity must map to the same id across re-parses, so the path is
always normalized to a workspace-relative, forward-slash form first.
"""

from __future__ import annotations

import hashlib
import posixpath

TEST_KIND = "test"


def normalize_path(path: str, root: str | None = None) -> str:
    """Return the canonical form of *path*.

    Backslashes become ``/``, ``.`` and ``..`` segments collapse, and an
    absolute path inside *root* becomes relative to it.  Absolute paths
    outside the root are kept absolute.  Pure: no filesystem access.
    """
    if not path:
        return ""
    p = path.replace("\\", "/")
    is_abs = p.startswith("/") or _has_drive(p)
    p = posixpath.normpath(p)
    if p == ".":
        return ""

    if root and is_abs:
        r = posixpath.normpath(root.replace("\\", "/"))
        if _has_drive(p) or _has_drive(r):
            p_cmp, r_cmp = p.lower(), r.lower()
        else:
            p_cmp, r_cmp = p, r
        if p_cmp == r_cmp:
            return ""
        prefix = r_cmp.rstrip("/") + "/"
        if p_cmp.startswith(prefix):
            return p[len(prefix):]
    return p


def _has_drive(p: str) -> bool:
    return len(p) >= 2 and p[1] == ":" and p[0].isalpha()


def node_id(kind: str, name: str, file_path: str, root: str | None = None) -> str:
    digest = hashlib.md5(
        f"{kind}:{name}:{normalize_path(file_path, root)}".encode("utf-8")
    ).hexdigest()
    return f"{kind}_{digest}"


def make_test_id(name: str, file_path: str, root: str | None = None) -> str:
    return node_id(TEST_KIND, name, file_path, root)
