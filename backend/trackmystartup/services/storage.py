from __future__ import annotations

import logging
import os
from pathlib import Path

from trackmystartup.config import settings
from trackmystartup.lifecycle.gateway import UploadResult

logger = logging.getLogger("trackmystartup.storage")


def storage_root() -> Path:
    root = Path(os.getenv("STORAGE_DIR") or settings.storage_dir)
    if not root.is_absolute():
        # Anchor relative paths at the backend folder.
        root = Path(__file__).resolve().parents[2] / root
    root.mkdir(parents=True, exist_ok=True)
    return root.resolve()


def write_object(*, bucket: str, path: str, content: bytes) -> Path:
    """Persist an object under `<storage_root>/<bucket>/<path>`.

    Uses an atomic write (tmp -> replace). Raises ValueError for paths that
    escape the bucket.
    """

    bucket_dir = (storage_root() / bucket).resolve()
    target_path = (bucket_dir / path).resolve()
    if not target_path.is_relative_to(bucket_dir) or target_path == bucket_dir:
        raise ValueError("Invalid object path")

    target_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = target_path.with_suffix(target_path.suffix + ".tmp")
    tmp_path.write_bytes(content)
    tmp_path.replace(target_path)
    return target_path


def public_url(bucket: str, path: str) -> str:
    base = settings.public_storage_url.rstrip("/")
    return f"{base}/{bucket}/{path}"


def upload_file(bucket: str, path: str, blob: bytes) -> UploadResult:
    try:
        write_object(bucket=bucket, path=path, content=blob)
    except (OSError, ValueError) as exc:
        logger.warning("storage_upload_failed", extra={"bucket": bucket, "path": path, "error": str(exc)})
        return UploadResult(success=False)
    logger.info("storage_upload", extra={"bucket": bucket, "path": path, "size": len(blob)})
    return UploadResult(success=True, url=public_url(bucket, path))


def delete_object(bucket: str, path: str) -> bool:
    """Remove an object; returns False when it was already gone."""

    bucket_dir = (storage_root() / bucket).resolve()
    target_path = (bucket_dir / path).resolve()
    if not target_path.is_relative_to(bucket_dir) or target_path == bucket_dir:
        raise ValueError("Invalid object path")
    if not target_path.exists():
        return False
    target_path.unlink()
    logger.info("storage_delete", extra={"bucket": bucket, "path": path})
    return True
