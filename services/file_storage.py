import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional

from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

# URL prefix under which main.py mounts the processed directory
PROCESSED_URL_BASE = "/processed"

# Upload names are stored as "<32 hex uuid>_<name>"; keeps the result under the 255 byte filename limit
MAX_FILENAME_LENGTH = 200
# Longer "extensions" are treated as part of the name when truncating
MAX_EXTENSION_LENGTH = 16


def normalize_filename(original_filename: Optional[str], default: str = "upload") -> str:
    """
    Filesystem-safe version of a client supplied filename, at most MAX_FILENAME_LENGTH characters.
    Truncation keeps the extension so the stored name still says what the file was.
    """
    safe_name = secure_filename(original_filename or "") or default
    if len(safe_name) <= MAX_FILENAME_LENGTH:
        return safe_name
    root, ext = os.path.splitext(safe_name)
    if len(ext) > MAX_EXTENSION_LENGTH:
        root, ext = safe_name, ""
    return root[:MAX_FILENAME_LENGTH - len(ext)] + ext


class LocalStorage:
    """
    Keeps uploads and processed images on the local filesystem.

    - uploads: temporary input files, removed once the request is done
    - processed: enhanced images and thumbnails, served under PROCESSED_URL_BASE
    """
    def __init__(self, upload_dir: str, processed_dir: str):
        self.upload_dir = Path(upload_dir)
        self.processed_dir = Path(processed_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.processed_dir.mkdir(parents=True, exist_ok=True)

    def save_upload(self, contents: bytes, original_filename: Optional[str]) -> str:
        safe_name = normalize_filename(original_filename)
        file_path = self.upload_dir / f"{uuid.uuid4().hex}_{safe_name}"
        with open(file_path, "wb") as f:
            f.write(contents)
        logger.info(f"Saved upload locally to: {file_path}")
        return str(file_path)

    def thumbnail_path_for(self, photo_id: uuid.UUID) -> str:
        return str(self.processed_dir / f"thumb_{photo_id.hex}.jpg")

    def public_url(self, file_path: Optional[str]) -> Optional[str]:
        if not file_path:
            return None
        return f"{PROCESSED_URL_BASE}/{Path(file_path).name}"

    def delete_file(self, file_path: Optional[str]) -> bool:
        """Best-effort removal; failures are logged, never raised."""
        if not file_path:
            return False
        try:
            os.remove(file_path)
            logger.info(f"Deleted file: {file_path}")
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error(f"Failed to delete file {file_path}: {e}")
            return False

    def cleanup_old_files(self, days_old: int = 7) -> int:
        """Removes files older than `days_old` days from both directories. Returns the count removed."""
        cutoff = time.time() - days_old * 24 * 60 * 60
        removed = 0
        for directory in (self.upload_dir, self.processed_dir):
            for entry in directory.iterdir():
                try:
                    if entry.is_file() and entry.stat().st_mtime < cutoff:
                        entry.unlink()
                        removed += 1
                except OSError as e:
                    logger.error(f"Failed to clean up old file {entry}: {e}")
        if removed:
            logger.info(f"Cleaned up {removed} file(s) older than {days_old} days.")
        return removed
