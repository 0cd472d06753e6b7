from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import PurePosixPath

from app.lib.api_client import supabase_admin

logger = logging.getLogger("portal.storage")

# 对象路径中的分类目录
MANUSCRIPTS = "manuscripts"
COVER_LETTERS = "cover-letters"
ASSESSMENTS = "assessments"
REVIEWED = "reviewed"
FINAL_DOCUMENTS = "final-documents"

# 本进程内已确认存在的 bucket
_verified_buckets: set[str] = set()


def _signed_url_from(resp: object) -> str | None:
    # storage3 不同版本分别返回 signedUrl / signedURL
    if not isinstance(resp, dict):
        return None
    return str(resp.get("signedUrl") or resp.get("signedURL") or "") or None


def build_object_path(
    *,
    user_id: str,
    kind: str,
    filename: str,
    prefix: str | None = None,
    now_ms: int | None = None,
) -> str:
    """
    生成对象存储路径：`<user_id>/<kind>/[<prefix>_]<timestamp_ms>.<ext>`。

    中文注释:
    - 与前端旧实现保持一致（按用户分目录，文件名只保留扩展名）。
    """
    ts = now_ms if now_ms is not None else int(time.time() * 1000)
    ext = PurePosixPath(filename or "").suffix.lstrip(".").lower()
    stem = f"{prefix}_{ts}" if prefix else str(ts)
    name = f"{stem}.{ext}" if ext else stem
    return f"{user_id}/{kind}/{name}"


def owner_of_path(path: str) -> str:
    return (path or "").split("/", 1)[0]


def _is_missing_bucket(exc: Exception) -> bool:
    text = str(exc).lower()
    return "not found" in text or "404" in text


def _is_existing_bucket(exc: Exception) -> bool:
    text = str(exc).lower()
    return "already" in text or "exists" in text or "duplicate" in text


def ensure_bucket_exists(*, bucket: str, public: bool = False) -> None:
    """
    首次上传前确认 bucket 存在，缺失时创建私有 bucket。

    中文注释: 正式环境由 migration 创建 bucket，这里只为本地/演示环境兜底。
    """
    if bucket in _verified_buckets:
        return
    storage = supabase_admin.storage
    try:
        storage.get_bucket(bucket)
    except Exception as e:
        if not _is_missing_bucket(e):
            raise
        logger.info("Storage bucket %s missing, creating it", bucket)
        try:
            storage.create_bucket(bucket, options={"public": public})
        except Exception as create_error:
            if not _is_existing_bucket(create_error):
                raise
    _verified_buckets.add(bucket)


@dataclass(frozen=True)
class UploadedFile:
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class SignedUrl:
    url: str
    expires_in: int


def create_signed_url(*, bucket: str, path: str, expires_in: int) -> SignedUrl:
    url = _signed_url_from(supabase_admin.storage.from_(bucket).create_signed_url(path, expires_in))
    if not url:
        raise RuntimeError(f"Storage returned no signed url for {path}")
    return SignedUrl(url=url, expires_in=expires_in)


def upload_bytes(
    *,
    bucket: str,
    path: str,
    content: bytes,
    content_type: str,
    upsert: bool = False,
) -> None:
    ensure_bucket_exists(bucket=bucket)
    # storage3 的 file_options 会直接作为 HTTP header，值必须是字符串
    file_options = {"content-type": content_type, "upsert": str(upsert).lower()}
    supabase_admin.storage.from_(bucket).upload(path, content, file_options)


def download_bytes(*, bucket: str, path: str) -> bytes:
    return supabase_admin.storage.from_(bucket).download(path)


def remove_objects(*, bucket: str, paths: list[str]) -> None:
    targets = [p for p in paths if p]
    if not targets:
        return
    supabase_admin.storage.from_(bucket).remove(targets)
    logger.info("Removed %d object(s) from %s", len(targets), bucket)


def discard_objects(*, bucket: str, paths: list[str]) -> None:
    """
    写库失败后清理已上传的对象；清理失败只记日志，不覆盖原始错误。
    """
    try:
        remove_objects(bucket=bucket, paths=paths)
    except Exception as e:
        logger.warning("Failed to clean up %d object(s) in %s: %s", len(paths), bucket, e)
