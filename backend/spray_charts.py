"""
Spray chart uploads.

Images live in one flat directory and are served back statically under the
upload URL prefix. A stored file must always be referenced by a report: when
linking the file to its report fails for any reason, the file is removed
again before the error propagates.
"""

import logging
import os
import re
import time
import uuid
from typing import Iterable, Optional

from scout_errors import FileTooLarge, StorageError, UnsupportedFileType, ValidationError
from scout_store import DomainStore

logger = logging.getLogger("scoutpro.uploads")

_EXT_RE = re.compile(r"^\.[a-z0-9]{1,10}$")
READ_CHUNK = 64 * 1024


class FileStore:
    def __init__(self, upload_dir: str, url_prefix: str = "/uploads", filename_prefix: str = "spray-chart-"):
        self.upload_dir = upload_dir
        self.url_prefix = url_prefix.rstrip("/")
        self.filename_prefix = filename_prefix

    def ensure_dir(self) -> None:
        os.makedirs(self.upload_dir, exist_ok=True)

    def is_accessible(self) -> bool:
        return os.path.isdir(self.upload_dir) and os.access(self.upload_dir, os.R_OK | os.W_OK)

    def new_filename(self, original_filename: Optional[str]) -> str:
        ext = os.path.splitext(original_filename or "")[1].lower()
        if not _EXT_RE.match(ext):
            ext = ""
        return f"{self.filename_prefix}{int(time.time() * 1000)}-{uuid.uuid4().hex[:12]}{ext}"

    def url_for(self, filename: str) -> str:
        return f"{self.url_prefix}/{filename}"

    def path_for_url(self, url: str) -> str:
        # only the basename is trusted, whatever the stored url says
        return os.path.join(self.upload_dir, os.path.basename(url))

    def save(self, data: bytes, original_filename: Optional[str]) -> str:
        """Write data under a fresh unique name and return its URL."""
        filename = self.new_filename(original_filename)
        path = os.path.join(self.upload_dir, filename)
        try:
            with open(path, "xb") as f:
                f.write(data)
        except OSError as exc:
            # a partial write must not stay behind
            if os.path.exists(path):
                os.remove(path)
            raise StorageError(f"Could not store upload: {exc}") from exc
        return self.url_for(filename)

    def exists(self, url: str) -> bool:
        return os.path.isfile(self.path_for_url(url))

    def remove(self, url: str) -> bool:
        """Best-effort delete. A missing file is not an error."""
        path = self.path_for_url(url)
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning("Could not delete %s: %s", path, exc)
            return False

    def remove_all(self, urls: Iterable[str]) -> int:
        return sum(1 for url in urls if url and self.remove(url))


def read_upload(fileobj, max_bytes: int) -> bytes:
    """Read an uploaded file object, refusing to buffer more than max_bytes."""
    chunks = []
    size = 0
    while True:
        chunk = fileobj.read(READ_CHUNK)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise FileTooLarge(f"File too large (max {max_bytes // (1024 * 1024)}MB)")
        chunks.append(chunk)
    return b"".join(chunks)


class UploadHandler:
    def __init__(self, store: DomainStore, files: FileStore, max_bytes: int = 5 * 1024 * 1024):
        self.store = store
        self.files = files
        self.max_bytes = max_bytes

    def check_type(self, mime_type: Optional[str]) -> None:
        if not (mime_type or "").lower().startswith("image/"):
            raise UnsupportedFileType()

    def validate(self, data: bytes, mime_type: Optional[str]) -> None:
        self.check_type(mime_type)
        if len(data) > self.max_bytes:
            raise FileTooLarge(f"File too large (max {self.max_bytes // (1024 * 1024)}MB)")
        if not data:
            raise ValidationError("No file uploaded")

    def attach_spray_chart(
        self,
        report_id: str,
        data: bytes,
        mime_type: Optional[str],
        original_filename: Optional[str] = None,
    ) -> str:
        self.validate(data, mime_type)
        url = self.files.save(data, original_filename)
        try:
            previous = self.store.set_spray_chart(report_id, url)
        except BaseException:
            self.files.remove(url)
            raise
        if previous and previous != url:
            self.files.remove(previous)
        logger.info("Spray chart uploaded: report %s -> %s", report_id, url)
        return url

    def cleanup(self, urls: Iterable[str]) -> int:
        """Remove files left behind by deleted reports; failures are only logged."""
        urls = list(urls)
        removed = self.files.remove_all(urls)
        if removed < len(urls):
            logger.info("Spray chart cleanup: %d of %d files removed", removed, len(urls))
        return removed
