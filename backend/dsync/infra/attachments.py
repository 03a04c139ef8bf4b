"""Attachment collaborator: stores uploaded bytes and hands back a durable URL."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, Optional, Protocol

import ulid

from dsync.domain.chat.errors import UploadFailed
from dsync.obs import metrics as obs_metrics
from dsync.settings import settings

LOGGER = logging.getLogger(__name__)

_KEY_PREFIX = "chat"


@dataclass(slots=True)
class StoredAttachment:
	key: str
	url: str
	file_name: str
	media_type: str
	size_bytes: int


class AttachmentStore(Protocol):
	async def upload(self, data: bytes, *, media_type: str, file_name: str, owner_id: str) -> StoredAttachment:
		...

	async def delete(self, key: str) -> None:
		...

	def key_from_url(self, url: str) -> Optional[str]:
		...


def _extension(file_name: str) -> str:
	suffix = PurePosixPath(file_name or "").suffix.lower()
	return suffix if 0 < len(suffix) <= 10 else ""


def _new_key(owner_id: str, file_name: str) -> str:
	return f"{_KEY_PREFIX}/{owner_id}/{ulid.new().str}{_extension(file_name)}"


def owned_by(key: str, owner_id: str) -> bool:
	"""True when `key` was minted by an upload from `owner_id`."""
	return bool(owner_id) and key.startswith(f"{_KEY_PREFIX}/{owner_id}/")


def _check_size(data: bytes) -> None:
	if not data:
		raise UploadFailed("empty_file", status_code=400)
	if len(data) > settings.attachment_max_bytes:
		raise UploadFailed("file_too_large", status_code=413)


class LocalAttachmentStore:
	"""Writes files below `upload_root` and serves them from `upload_base_url`."""

	def __init__(
		self,
		root: str | Path | None = None,
		base_url: str | None = None,
		*,
		timeout_seconds: float | None = None,
	) -> None:
		self._root = Path(root or settings.upload_root)
		self._base_url = (base_url or settings.upload_base_url).rstrip("/")
		self._timeout = timeout_seconds or settings.attachment_timeout_seconds

	def _path_for(self, key: str) -> Path:
		path = (self._root / key).resolve()
		if self._root.resolve() not in path.parents:
			raise UploadFailed("invalid_key", status_code=400)
		return path

	@staticmethod
	def _write(path: Path, data: bytes) -> None:
		path.parent.mkdir(parents=True, exist_ok=True)
		path.write_bytes(data)

	async def upload(self, data: bytes, *, media_type: str, file_name: str, owner_id: str) -> StoredAttachment:
		_check_size(data)
		key = _new_key(owner_id, file_name)
		path = self._path_for(key)
		try:
			await asyncio.wait_for(asyncio.to_thread(self._write, path, data), timeout=self._timeout)
		except asyncio.TimeoutError as exc:
			obs_metrics.inc_attachment_upload("timeout")
			raise UploadFailed("upload_timeout") from exc
		except OSError as exc:
			obs_metrics.inc_attachment_upload("error")
			LOGGER.warning("attachment write failed", extra={"key": key}, exc_info=True)
			raise UploadFailed("upload_failed") from exc
		obs_metrics.inc_attachment_upload("ok")
		return StoredAttachment(
			key=key,
			url=f"{self._base_url}/{key}",
			file_name=file_name,
			media_type=media_type,
			size_bytes=len(data),
		)

	async def delete(self, key: str) -> None:
		path = self._path_for(key)
		await asyncio.wait_for(asyncio.to_thread(path.unlink, missing_ok=True), timeout=self._timeout)

	def key_from_url(self, url: str) -> Optional[str]:
		prefix = f"{self._base_url}/"
		if not url or not url.startswith(prefix):
			return None
		return url[len(prefix):] or None


class MemoryAttachmentStore:
	"""In-process store for tests and single-node demos."""

	def __init__(self, base_url: str = "memory://attachments") -> None:
		self._base_url = base_url.rstrip("/")
		self.objects: Dict[str, bytes] = {}
		self.fail_uploads = False
		self.fail_deletes = False

	async def upload(self, data: bytes, *, media_type: str, file_name: str, owner_id: str) -> StoredAttachment:
		_check_size(data)
		if self.fail_uploads:
			obs_metrics.inc_attachment_upload("error")
			raise UploadFailed("upload_failed")
		key = _new_key(owner_id, file_name)
		self.objects[key] = bytes(data)
		obs_metrics.inc_attachment_upload("ok")
		return StoredAttachment(
			key=key,
			url=f"{self._base_url}/{key}",
			file_name=file_name,
			media_type=media_type,
			size_bytes=len(data),
		)

	async def delete(self, key: str) -> None:
		if self.fail_deletes:
			raise UploadFailed("delete_failed")
		self.objects.pop(key, None)

	def key_from_url(self, url: str) -> Optional[str]:
		prefix = f"{self._base_url}/"
		if not url or not url.startswith(prefix):
			return None
		return url[len(prefix):] or None


def kind_for_media_type(media_type: str | None) -> str:
	"""Message kind for an uploaded file."""
	lowered = (media_type or "").lower()
	if lowered.startswith("image/"):
		return "image"
	if lowered.startswith("audio/"):
		return "voice"
	return "file"
