import hashlib
import os
import re
import tempfile
import time
from pathlib import Path

import structlog

from copyright_registry.core.errors import InvalidAddress

logger = structlog.get_logger()

ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")
UINT32_MAX = 2 ** 32 - 1


def normalize_address(address: str) -> str:
    """Validate an account address and return its canonical lower-case form."""
    if not isinstance(address, str) or not ADDRESS_PATTERN.match(address.strip()):
        raise InvalidAddress(f"Invalid address: {address!r}")
    return address.strip().lower()


def now_timestamp() -> int:
    """Current time in whole seconds since the epoch."""
    return int(time.time())


def save_temp_upload(upload_file) -> str:
    """Save uploaded file to temporary location and return path."""
    suffix = Path(upload_file.filename).suffix if upload_file.filename else ""
    temp_fd, temp_path = tempfile.mkstemp(suffix=suffix)

    try:
        with os.fdopen(temp_fd, "wb") as f:
            content = upload_file.file.read()
            f.write(content)
    except Exception as e:
        logger.error("Failed to save temporary upload",
                     filename=upload_file.filename, error=str(e))
        cleanup_temp_file(temp_path)
        raise

    # Reset file pointer for potential re-reading
    upload_file.file.seek(0)

    logger.info("Saved temporary upload",
                filename=upload_file.filename, temp_path=temp_path, size=len(content))
    return temp_path


def calculate_file_hash(file_path: str, algorithm: str = "sha256") -> str:
    """Calculate hash of file content for fingerprinting."""
    try:
        hash_obj = hashlib.new(algorithm)
        with open(file_path, "rb") as f:
            for chunk in iter(lambda: f.read(8192), b""):
                hash_obj.update(chunk)

        file_hash = hash_obj.hexdigest()
        logger.debug("Calculated file hash", file_path=file_path, hash=file_hash, algorithm=algorithm)
        return file_hash

    except Exception as e:
        logger.error("Failed to calculate file hash", file_path=file_path, error=str(e))
        raise


def content_hash_from_digest(hex_digest: str) -> int:
    """Fold a hex digest into the uint32 content hash accepted by the registry."""
    return int(hex_digest[:8], 16)


def cleanup_temp_file(file_path: str) -> bool:
    """Clean up temporary file safely."""
    try:
        if file_path and os.path.exists(file_path):
            os.unlink(file_path)
            logger.debug("Cleaned up temporary file", file_path=file_path)
            return True
        return False
    except OSError as e:
        logger.warning("Failed to cleanup temporary file", file_path=file_path, error=str(e))
        return False
