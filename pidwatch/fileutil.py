"""Small filesystem helpers for marker files."""

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def file_exists(path: Path) -> bool:
    return os.path.exists(path)


def write_file_atomic(path: Path, data: bytes, mode: int = 0o644):
    """Write data to path so readers never see a partial file.

    The content goes to a temp file in the same directory, which is then
    renamed over the target.
    """
    path = Path(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass
        raise


def remove_file(path: Path) -> bool:
    """Remove a file if present. Returns True if something was removed."""
    try:
        os.remove(path)
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Failed to remove {path}: {e}")
        return False
