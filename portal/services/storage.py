# portal/services/storage.py
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError
from portal.config import settings
import structlog

logger = structlog.get_logger()


class StorageError(Exception):
    pass


class LocalStorage:
    """Stores objects as files under a root directory."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    def save(self, file_bytes: bytes, key: str, content_type: str = "application/pdf") -> str:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(file_bytes)
        logger.info("storage_saved", key=key, size=len(file_bytes))
        return key

    def read(self, key: str) -> bytes:
        path = self._path(key)
        if not path.is_file():
            raise FileNotFoundError(key)
        return path.read_bytes()

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        path = self._path(key)
        if path.is_file():
            path.unlink()
            logger.info("storage_deleted", key=key)

    def ping(self) -> None:
        if not self.root.is_dir():
            raise StorageError(f"Storage root missing: {self.root}")


class R2Storage:
    """S3-compatible object storage (Cloudflare R2)."""

    def __init__(self):
        self.s3 = boto3.client(
            "s3",
            endpoint_url=settings.R2_ENDPOINT_URL,
            aws_access_key_id=settings.R2_ACCESS_KEY_ID,
            aws_secret_access_key=settings.R2_SECRET_ACCESS_KEY,
            config=Config(signature_version="s3v4"),
            region_name="auto",
        )
        self.bucket = settings.R2_BUCKET_NAME

    def save(self, file_bytes: bytes, key: str, content_type: str = "application/pdf") -> str:
        self.s3.put_object(
            Bucket=self.bucket, Key=key, Body=file_bytes, ContentType=content_type
        )
        logger.info("r2_uploaded", key=key, size=len(file_bytes))
        return key

    def read(self, key: str) -> bytes:
        try:
            return self.s3.get_object(Bucket=self.bucket, Key=key)["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(key) from exc
            raise

    def exists(self, key: str) -> bool:
        try:
            self.s3.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError:
            return False

    def delete(self, key: str) -> None:
        self.s3.delete_object(Bucket=self.bucket, Key=key)
        logger.info("r2_deleted", key=key)

    def ping(self) -> None:
        self.s3.head_bucket(Bucket=self.bucket)


_storage: Optional[LocalStorage | R2Storage] = None


def get_storage() -> LocalStorage | R2Storage:
    global _storage
    if _storage is None:
        if settings.STORAGE_BACKEND == "r2":
            _storage = R2Storage()
        else:
            _storage = LocalStorage(settings.STORAGE_LOCAL_ROOT)
    return _storage


def delete_quietly(key: Optional[str]) -> bool:
    """Best-effort removal used when the DB change matters more than the bytes."""
    if not key:
        return False
    try:
        get_storage().delete(key)
        return True
    except Exception as exc:
        logger.warning("storage_delete_failed", key=key, error=str(exc))
        return False
