"""Object storage for receipt files.

Uploads land in a quarantine area and move to a processed area once
extraction has produced a usable result. Two backends are selected via
``settings.storage_backend``:

1. **filesystem** (default): one directory per area under ``storage_root``.
2. **minio**: one bucket per area on an S3-compatible MinIO server.

Object paths are always ``{owner_id}/{receipt_id}{extension}``; the worker
recovers the receipt id and owner from the path alone.
"""

import io
import logging
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Protocol

from minio import Minio
from minio.commonconfig import CopySource
from minio.error import S3Error

from receipt_tracker.config import get_settings

logger = logging.getLogger(__name__)

_OWNER_ID_PATTERN = re.compile(r"^[A-Za-z0-9._@-]{1,256}$")


def is_safe_owner_id(owner_id: str) -> bool:
    """Check that an owner id can be used as a single path segment."""
    return bool(_OWNER_ID_PATTERN.match(owner_id)) and owner_id not in (".", "..")


def build_object_path(owner_id: str, receipt_id: uuid.UUID, extension: str) -> str:
    return f"{owner_id}/{receipt_id}{extension}"


@dataclass(frozen=True)
class StagedObject:
    """Identity of a receipt recovered from its object path."""

    owner_id: str
    receipt_id: uuid.UUID
    extension: str


def parse_staged_path(path: str) -> StagedObject | None:
    """Split ``{owner_id}/{receipt_id}{extension}`` back into its parts.

    Returns None when the path does not have exactly two segments or the
    file name stem is not a UUID.
    """
    segments = path.split("/")
    if len(segments) != 2:
        logger.error(
            f"Unexpected object path format: '{path}'. Expected '{{owner_id}}/{{receipt_id}}{{ext}}'"
        )
        return None

    owner_id, file_name = segments
    name = PurePosixPath(file_name)
    try:
        receipt_id = uuid.UUID(name.stem)
    except ValueError:
        logger.error(f"Could not parse receipt ID from object file name: '{file_name}'")
        return None

    return StagedObject(owner_id=owner_id, receipt_id=receipt_id, extension=name.suffix)


class ObjectNotFoundError(Exception):
    """The requested object is not in the quarantine area."""


class ObjectStage(Protocol):
    """Quarantine/processed storage used by the API and the worker."""

    def stage(self, content: bytes, path: str, content_type: str) -> None: ...

    def read(self, path: str) -> bytes: ...

    def relocate(self, path: str) -> bool: ...

    def list_quarantined(self) -> list[str]: ...


class FilesystemObjectStage:
    """Areas as directories on local disk."""

    def __init__(
        self,
        root: str | Path | None = None,
        quarantine_area: str | None = None,
        processed_area: str | None = None,
    ) -> None:
        settings = get_settings()
        self.root = Path(root or settings.storage_root).resolve()
        self.quarantine_dir = self.root / (quarantine_area or settings.quarantine_area)
        self.processed_dir = self.root / (processed_area or settings.processed_area)
        self.quarantine_dir.mkdir(parents=True, exist_ok=True)
        self.processed_dir.mkdir(parents=True, exist_ok=True)

    def _resolve(self, area_dir: Path, path: str) -> Path:
        target = (area_dir / path).resolve()
        if not target.is_relative_to(area_dir):
            raise ValueError(f"Object path escapes storage area: {path}")
        return target

    def stage(self, content: bytes, path: str, content_type: str) -> None:
        """Write an uploaded file into quarantine."""
        target = self._resolve(self.quarantine_dir, path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        logger.debug(f"Staged {path} ({content_type}, {len(content)} bytes) at {target}")

    def read(self, path: str) -> bytes:
        """Read a quarantined file."""
        try:
            return self._resolve(self.quarantine_dir, path).read_bytes()
        except FileNotFoundError:
            raise ObjectNotFoundError(path) from None

    def relocate(self, path: str) -> bool:
        """Copy a file from quarantine to processed, then delete the original.

        Returns:
            False when the source is already gone (moved by an earlier run)
        """
        source = self._resolve(self.quarantine_dir, path)
        if not source.exists():
            logger.info(f"Object '{path}' is no longer in quarantine, nothing to move")
            return False

        destination = self._resolve(self.processed_dir, path)
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(source, destination)
        source.unlink(missing_ok=True)
        return True

    def list_quarantined(self) -> list[str]:
        return sorted(
            p.relative_to(self.quarantine_dir).as_posix()
            for p in self.quarantine_dir.rglob("*")
            if p.is_file()
        )


class MinioObjectStage:
    """Areas as buckets on a MinIO (S3-compatible) server."""

    def __init__(self, client: Minio | None = None) -> None:
        settings = get_settings()
        self._client = client or Minio(
            settings.minio_endpoint,
            access_key=settings.minio_access_key,
            secret_key=settings.minio_secret_key,
            secure=settings.minio_secure,
        )
        self.quarantine_bucket = settings.quarantine_area
        self.processed_bucket = settings.processed_area

    def ensure_buckets(self) -> None:
        """Create both buckets if missing (idempotent)."""
        for bucket in (self.quarantine_bucket, self.processed_bucket):
            if not self._client.bucket_exists(bucket):
                self._client.make_bucket(bucket)

    def stage(self, content: bytes, path: str, content_type: str) -> None:
        self._client.put_object(
            self.quarantine_bucket,
            path,
            io.BytesIO(content),
            len(content),
            content_type=content_type,
        )
        logger.debug(f"MinIO object put: {self.quarantine_bucket}/{path} size={len(content)}")

    def read(self, path: str) -> bytes:
        try:
            response = self._client.get_object(self.quarantine_bucket, path)
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise ObjectNotFoundError(path) from e
            raise
        try:
            return response.read()
        finally:
            response.close()
            response.release_conn()

    def relocate(self, path: str) -> bool:
        """Copy an object into the processed bucket, then remove the original.

        Returns:
            False when the source object no longer exists
        """
        try:
            self._client.copy_object(
                self.processed_bucket, path, CopySource(self.quarantine_bucket, path)
            )
        except S3Error as e:
            if e.code == "NoSuchKey":
                logger.info(f"Object '{path}' is no longer in quarantine, nothing to move")
                return False
            raise

        self._client.remove_object(self.quarantine_bucket, path)
        return True

    def list_quarantined(self) -> list[str]:
        return [
            obj.object_name
            for obj in self._client.list_objects(self.quarantine_bucket, recursive=True)
        ]


def get_object_stage() -> ObjectStage:
    """Build the object stage for the configured backend."""
    settings = get_settings()
    backend = settings.storage_backend.lower()

    if backend == "minio":
        stage = MinioObjectStage()
        stage.ensure_buckets()
        return stage
    if backend == "filesystem":
        return FilesystemObjectStage()
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
