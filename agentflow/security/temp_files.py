"""
Secure temporary script files.

Scripts are written to owner-only (0600) files under the system temp
directory and removed once the step finishes.
"""

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

SCRIPT_SUFFIX = ".sh"


def create_secure_temp_file(content: str, prefix: str = "agent-script-") -> str:
    """
    Write content to a new temp file readable only by the current user.

    Args:
        content: File content
        prefix: File name prefix

    Returns:
        Absolute path of the created file
    """
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=SCRIPT_SUFFIX)
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w") as handle:
            handle.write(content)
    except OSError:
        try:
            os.unlink(path)
        except OSError:
            pass
        raise
    logger.debug(f"Created secure temp file: {path}")
    return path


def cleanup_temp_file(path: str) -> None:
    """
    Remove a temp file created by :func:`create_secure_temp_file`.

    An empty path is ignored and a file that is already gone is not an
    error. Paths outside the system temp directory are refused.

    Raises:
        ValueError: If the path is outside the temp directory
    """
    if not path:
        return

    temp_root = Path(tempfile.gettempdir()).resolve()
    target = Path(path).resolve()
    if temp_root not in target.parents:
        raise ValueError(f"refusing to remove file outside temp directory: {path}")

    try:
        target.unlink()
        logger.debug(f"Removed temp file: {path}")
    except FileNotFoundError:
        logger.debug(f"Temp file already removed: {path}")
