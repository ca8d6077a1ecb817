from __future__ import annotations

import logging
import shutil
import uuid
from pathlib import Path

"""File upload: copy a local file into the uploads directory.

Returns ``{"file_url": "file:///..."}`` like the hosted upload endpoint, so
the parser can treat local and remote files the same way.
"""

logger = logging.getLogger(__name__)


def upload_file(path: Path, uploads_dir: Path) -> dict[str, str]:
    if not path.is_file():
        raise FileNotFoundError(f"file not found: {path}")
    uploads_dir.mkdir(parents=True, exist_ok=True)
    dest = uploads_dir / f"{uuid.uuid4().hex[:12]}-{path.name}"
    shutil.copy2(path, dest)
    logger.debug("Uploaded %s -> %s", path, dest)
    return {"file_url": dest.resolve().as_uri()}
