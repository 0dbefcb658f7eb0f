"""OSC-7 working-directory reports.

Shells announce their cwd with ``ESC ] 7 ; file://<host>/<path> BEL``.
This module turns the URI part into a plain filesystem path.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import unquote, urlsplit

logger = logging.getLogger(__name__)

OSC7_PREFIX = "7;"

# "/C:/Users/dev" as reported by shells on Windows
_DRIVE_PATH_RE = re.compile(r"^/([A-Za-z]):(/.*)?$")


def parse_osc7_uri(uri: str) -> str | None:
    """Normalize an OSC-7 ``file://`` URI to a local path.

    The host part is ignored, the path is percent-decoded, and drive-letter
    paths (``/C:/Users/dev``) are rewritten to ``C:\\Users\\dev``.

    Returns:
        The normalized path, or None if the URI is malformed.
    """
    uri = uri.strip()
    if not uri.lower().startswith("file://"):
        logger.debug("Dropping OSC-7 report with unsupported URI: %r", uri[:200])
        return None

    try:
        parts = urlsplit(uri)
    except ValueError:
        logger.debug("Dropping malformed OSC-7 URI: %r", uri[:200])
        return None

    path = unquote(parts.path)
    if not path.startswith("/") or "\x00" in path:
        logger.debug("Dropping OSC-7 URI without absolute path: %r", uri[:200])
        return None

    m = _DRIVE_PATH_RE.match(path)
    if m:
        drive, rest = m.group(1), m.group(2) or "/"
        return f"{drive}:" + rest.replace("/", "\\")

    return path
