"""Atomic file writes for generated configuration."""

import os
import tempfile
from pathlib import Path
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


def write_text_file(path: Path, content: str, *, overwrite: bool = True, mode: Optional[int] = None) -> bool:
    """
    Write ``content`` to ``path`` through a temporary file and a rename.

    Args:
        path: Destination file
        content: Text to write
        overwrite: When False an existing file is left untouched
        mode: Optional permission bits applied before the rename

    Returns:
        True when the file was written, False when it already existed and
        ``overwrite`` was False
    """
    path = Path(path)
    if path.exists() and not overwrite:
        logger.info("config_file_kept", path=str(path))
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    logger.info("config_file_written", path=str(path), bytes=len(content))
    return True
