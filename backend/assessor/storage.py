"""Binary storage collaborators for presentation submissions.

Videos go to Cloudinary and documents to Google Drive. Both are plain REST
clients over httpx; neither service is transactional, which is why the
submission saga compensates with ``delete`` instead of rolling back.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from typing import Any, AsyncIterator, BinaryIO, Dict, Optional, Protocol

import httpx

from .errors import StorageError
from .schemas import StoredObject
from .settings import settings


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class BinaryStorage(Protocol):
	async def upload(self, file: BinaryIO, *, folder: str, filename: str, content_type: str) -> StoredObject:
		...

	async def delete(self, object_id: str) -> None:
		...


def _sign(params: Dict[str, Any], api_secret: str) -> str:
	to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params))
	return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryVideoStorage:
	def __init__(
		self,
		cloud_name: Optional[str] = None,
		api_key: Optional[str] = None,
		api_secret: Optional[str] = None,
		*,
		timeout: float = 120.0,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.cloud_name = cloud_name or settings.cloudinary_cloud_name
		self.api_key = api_key or settings.cloudinary_api_key
		self.api_secret = api_secret or settings.cloudinary_api_secret
		if not (self.cloud_name and self.api_key and self.api_secret):
			raise ValueError("Cloudinary credentials are not configured")
		self.base_url = f"https://api.cloudinary.com/v1_1/{self.cloud_name}/video"
		self._client = client or httpx.AsyncClient(timeout=timeout)

	def _signed(self, params: Dict[str, Any]) -> Dict[str, Any]:
		params = {**params, "timestamp": int(time.time())}
		return {**params, "api_key": self.api_key, "signature": _sign(params, self.api_secret)}

	async def upload(self, file: BinaryIO, *, folder: str, filename: str, content_type: str) -> StoredObject:
		data = self._signed({"folder": folder})
		try:
			r = await self._client.post(f"{self.base_url}/upload", data=data, files={"file": (filename, file, content_type)})
			r.raise_for_status()
			body = r.json()
			return StoredObject(id=body["public_id"], url=body["secure_url"])
		except (httpx.HTTPError, ValueError, KeyError) as err:
			raise StorageError(f"Cloudinary upload failed: {err}") from err

	async def delete(self, object_id: str) -> None:
		data = self._signed({"public_id": object_id})
		try:
			r = await self._client.post(f"{self.base_url}/destroy", data=data)
			r.raise_for_status()
			result = r.json().get("result")
		except (httpx.HTTPError, ValueError) as err:
			raise StorageError(f"Cloudinary delete failed for {object_id}: {err}") from err
		if result not in ("ok", "not found"):
			raise StorageError(f"Cloudinary delete for {object_id} returned {result!r}")

	async def aclose(self) -> None:
		await self._client.aclose()


async def _read_chunks(file: BinaryIO) -> AsyncIterator[bytes]:
	while True:
		chunk = file.read(CHUNK_SIZE)
		if not chunk:
			break
		yield chunk


class DriveDocumentStorage:
	upload_url = "https://www.googleapis.com/upload/drive/v3/files"
	files_url = "https://www.googleapis.com/drive/v3/files"

	def __init__(
		self,
		access_token: Optional[str] = None,
		folder_id: Optional[str] = None,
		*,
		timeout: float = 120.0,
		client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self.access_token = access_token or settings.google_drive_access_token
		if not self.access_token:
			raise ValueError("GOOGLE_DRIVE_ACCESS_TOKEN is not configured")
		self.folder_id = folder_id or settings.google_drive_folder_id
		self._client = client or httpx.AsyncClient(timeout=timeout)
		self._headers = {"Authorization": f"Bearer {self.access_token}"}

	async def upload(self, file: BinaryIO, *, folder: str, filename: str, content_type: str) -> StoredObject:
		# Drive has no folder paths; the hint becomes part of the file name
		metadata = {
			"name": f"{int(time.time() * 1000)}_{folder.replace('/', '_')}_{filename}",
			"parents": [self.folder_id],
		}
		try:
			start = await self._client.post(
				self.upload_url,
				params={"uploadType": "resumable"},
				headers={**self._headers, "Content-Type": "application/json; charset=UTF-8", "X-Upload-Content-Type": content_type},
				content=json.dumps(metadata),
			)
			start.raise_for_status()
			session_url = start.headers["Location"]
			r = await self._client.put(
				session_url,
				params={"fields": "id,name,webViewLink,webContentLink"},
				headers={"Content-Type": content_type},
				content=_read_chunks(file),
			)
			r.raise_for_status()
			file_id = r.json()["id"]
		except (httpx.HTTPError, ValueError, KeyError) as err:
			raise StorageError(f"Drive upload failed: {err}") from err
		# Readable by link, as reviewers open it without a Google account
		try:
			perm = await self._client.post(
				f"{self.files_url}/{file_id}/permissions",
				headers=self._headers,
				json={"role": "reader", "type": "anyone"},
			)
			perm.raise_for_status()
			details = await self._client.get(
				f"{self.files_url}/{file_id}",
				headers=self._headers,
				params={"fields": "id,webViewLink"},
			)
			details.raise_for_status()
			view_link = details.json().get("webViewLink")
		except (httpx.HTTPError, ValueError) as err:
			# The file exists; the caller only gets an error, so remove it here
			await self._delete_quietly(file_id)
			raise StorageError(f"Drive sharing failed for {file_id}: {err}") from err
		return StoredObject(
			id=file_id,
			url=f"https://drive.google.com/uc?export=download&id={file_id}",
			view_link=view_link,
		)

	async def delete(self, object_id: str) -> None:
		try:
			r = await self._client.delete(f"{self.files_url}/{object_id}", headers=self._headers)
			if r.status_code == 404:
				return
			r.raise_for_status()
		except httpx.HTTPError as err:
			raise StorageError(f"Drive delete failed for {object_id}: {err}") from err

	async def _delete_quietly(self, object_id: str) -> None:
		try:
			await self.delete(object_id)
		except StorageError as err:
			logger.error("Could not remove half-shared Drive file %s: %s", object_id, err)

	async def aclose(self) -> None:
		await self._client.aclose()
