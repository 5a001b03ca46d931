"""
Media Paths
===========

URL path escaping and media map lookup.

Media references in XForms look like ``jr://images/logo.png``; the media
map is keyed by the file part (``logo.png``).
"""

import re
from typing import Dict, Mapping, Optional
from urllib.parse import quote

# Characters encodeURI() leaves alone, plus "%" so escaping is idempotent
_SAFE = "/:?#[]@!$&'()*+,;=%~"

_JR_MEDIA = re.compile(r"jr://[\w-]+/(.+)")


def escape_url_path(value: str) -> str:
    """Percent-encode characters that are unsafe in a URL path."""
    return quote(value, safe=_SAFE)


def escape_media_map(media: Optional[Mapping[str, str]]) -> Dict[str, str]:
    """Escape every key and value of a media map."""
    return {
        escape_url_path(key): escape_url_path(value)
        for key, value in (media or {}).items()
    }


def get_media_path(media_map: Mapping[str, str], source: str) -> Optional[str]:
    """
    Resolve a media reference through an escaped media map.

    Returns:
        The mapped path, or None when ``source`` is not a ``jr://`` media
        reference or its file is not in the map
    """
    match = _JR_MEDIA.match(source.strip())
    if match is None:
        return None
    return media_map.get(escape_url_path(match.group(1)))
