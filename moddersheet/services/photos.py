from __future__ import annotations

import logging
import secrets
import time
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Any, List, Optional, Sequence, Tuple

from PIL import Image

from moddersheet import config as app_config

logger = logging.getLogger(__name__)

MAX_SIDE = 1600


def compress_image_to_jpeg(src_path: Path, dest_path: Path, quality: int) -> None:
    with Image.open(src_path) as im:
        im = im.convert('RGB')
        im.thumbnail((MAX_SIDE, MAX_SIDE))
        im.save(dest_path, format='JPEG', quality=quality, optimize=True)


def _read_upload(item: Any) -> Tuple[str, bytes]:
    """Accept a path, a ``(filename, bytes)`` pair or a file-like upload."""
    if isinstance(item, (str, Path)):
        p = Path(item)
        return p.name, p.read_bytes()
    if isinstance(item, tuple):
        name, data = item
        return str(name), bytes(data)
    name = getattr(item, "filename", None) or getattr(item, "name", None) or "upload"
    return Path(str(name)).name, item.read()


def _unique_name(ext: str) -> str:
    ext = (ext or "jpg").lstrip(".").lower() or "jpg"
    return f"{int(time.time() * 1000)}-{secrets.token_hex(6)}.{ext}"


class LocalBlobStore:
    """Compress uploads to JPEG under PHOTOS_DIR and serve them from MEDIA_URL_PREFIX."""

    def __init__(self, directory: Optional[Path] = None, url_prefix: Optional[str] = None):
        self.directory = Path(directory) if directory is not None else None
        self.url_prefix = url_prefix

    @property
    def target_dir(self) -> Path:
        return self.directory if self.directory is not None else app_config.PHOTOS_DIR

    @property
    def prefix(self) -> str:
        return (self.url_prefix if self.url_prefix is not None else app_config.MEDIA_URL_PREFIX).rstrip("/")

    def upload_images(self, files: Sequence[Any]) -> Optional[List[str]]:
        target = self.target_dir
        target.mkdir(parents=True, exist_ok=True)
        written: List[Path] = []
        urls: List[str] = []
        try:
            with TemporaryDirectory(prefix="tmp_upload_", dir=target) as tmp_dir:
                for idx, item in enumerate(files):
                    _, data = _read_upload(item)
                    tmp_path = Path(tmp_dir) / f"source_{idx}"
                    tmp_path.write_bytes(data)
                    dest = target / _unique_name("jpg")
                    compress_image_to_jpeg(tmp_path, dest, app_config.PHOTO_QUALITY)
                    written.append(dest)
                    urls.append(f"{self.prefix}/{dest.name}")
        except Exception:
            logger.exception("Failed to store %d uploaded image(s)", len(files))
            for dest in written:
                try:
                    dest.unlink()
                except OSError:
                    logger.warning("Failed to remove incomplete photo %s", dest, exc_info=True)
            return None
        return urls


class SupabaseBlobStore:
    """Uploads files to a storage bucket and returns their public URLs."""

    def __init__(self, bucket: Optional[str] = None, client=None):
        if client is None:
            if not app_config.SUPABASE_URL or not app_config.SUPABASE_KEY:
                raise ValueError(
                    "Supabase credentials required. Set SUPABASE_URL and SUPABASE_KEY "
                    "in config.json or the environment."
                )
            from supabase import create_client

            client = create_client(app_config.SUPABASE_URL, app_config.SUPABASE_KEY)
        self.client = client
        self.bucket = bucket or app_config.STORAGE_BUCKET

    def upload_images(self, files: Sequence[Any]) -> Optional[List[str]]:
        storage = self.client.storage.from_(self.bucket)
        urls: List[str] = []
        for item in files:
            try:
                name, data = _read_upload(item)
                key = _unique_name(Path(name).suffix)
                storage.upload(key, data, {"cache-control": "3600", "upsert": "false"})
                urls.append(storage.get_public_url(key))
            except Exception:
                logger.exception("Failed to upload image to bucket %s", self.bucket)
                return None
        return urls


def create_blob_store(kind: Optional[str] = None):
    kind = (kind or app_config.BLOB_STORE).lower()
    if kind == "supabase":
        return SupabaseBlobStore()
    if kind == "local":
        return LocalBlobStore()
    raise ValueError(f"Unknown BLOB_STORE: {kind}")
