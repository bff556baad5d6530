from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)

RESOURCES_DIR = Path(__file__).resolve().parent / "resources"

# Bundle name -> files (relative to RESOURCES_DIR), concatenated in order.
BUNDLES: Dict[str, List[str]] = {
    "wiki.css": [
        "styles/reset.css",
        "styles/style.css",
    ],
    "wiki.js": [
        "scripts/wiki.js",
    ],
}

_MEDIA_TYPES = {
    ".css": "text/css",
    ".js": "application/javascript",
}


def build_bundle(name: str, *, resources_dir: Path = RESOURCES_DIR) -> Tuple[str, str]:
    """
    Concatenate the files of bundle `name`.

    Returns: (content, media_type)

    Raises:
        KeyError: If no bundle has that name
    """
    files = BUNDLES[name]
    parts: List[str] = []
    for rel in files:
        path = resources_dir / rel
        try:
            parts.append(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            logger.warning("Bundle %s: missing file %s", name, rel)
    media_type = _MEDIA_TYPES.get(Path(name).suffix, "text/plain")
    return "\n".join(parts), media_type
