"""
Asset References - derive media-host deletion identifiers from asset URLs.

Pure functions, no I/O. A hosted URL looks like
    https://res.cloudinary.com/<cloud>/<kind>/upload/v1712/<folder>/<name>.<ext>
and its identifier is everything after the upload marker, minus the
version segment and the extension.
"""

import re

from app.models.api import DEFAULT_CLASS_IMAGE, DEFAULT_COURSE_IMAGE
from app.models.domain import AssetKind, HostedAssetRef

UPLOAD_MARKER = "/upload/"
PLACEHOLDER_ASSETS = frozenset({DEFAULT_CLASS_IMAGE, DEFAULT_COURSE_IMAGE})

_VERSION_SEGMENT = re.compile(r"^v\d+/")


def extract_identifier(url: str | None) -> str | None:
    """
    Return the media-host identifier for `url`, or None if it isn't a hosted URL.

    >>> extract_identifier("https://host/x/upload/v12345/folder/sub/name.mp4")
    'folder/sub/name'
    >>> extract_identifier("https://host/no-upload-marker") is None
    True
    """
    if not url:
        return None

    marker_at = url.find(UPLOAD_MARKER)
    if marker_at == -1:
        return None

    path = url[marker_at + len(UPLOAD_MARKER) :]
    path = _VERSION_SEGMENT.sub("", path, count=1)

    last_dot = path.rfind(".")
    if last_dot != -1:
        path = path[:last_dot]

    return path or None


def is_placeholder(value: str | None) -> bool:
    """True for empty values and the default images that never live on the host."""
    return not value or value in PLACEHOLDER_ASSETS


def asset_ref(url: object, kind: AssetKind) -> HostedAssetRef | None:
    """
    Build a deletion handle for `url`, skipping placeholders and foreign URLs.

    Accepts raw payload values, so anything that is not a string is skipped.
    """
    if not isinstance(url, str) or is_placeholder(url):
        return None
    identifier = extract_identifier(url)
    if identifier is None:
        return None
    return HostedAssetRef(identifier=identifier, kind=kind)
