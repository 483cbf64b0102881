"""Remote replica of backup artifacts."""

import json
import logging
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import requests

from snapkeep.utils.errors import NotAuthenticatedError, TransportError

from .models import RemoteArtifact, parse_timestamp

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


class RemoteReplicaAdapter(ABC):
    """Provider-agnostic object store for backup artifacts.

    Every method raises :class:`NotAuthenticatedError` when the credential is
    missing or rejected, and :class:`TransportError` for any other network or
    API failure. Nothing is retried here.
    """

    @abstractmethod
    def upload(self, data: bytes, name: str, on_progress: Optional[ProgressCallback] = None) -> str:
        """Store ``data`` under ``name`` and return the remote object id."""

    @abstractmethod
    def download(self, remote_id: str, on_progress: Optional[ProgressCallback] = None) -> bytes:
        """Fetch the bytes of a remote object."""

    @abstractmethod
    def list(self) -> List[RemoteArtifact]:
        """List backup artifacts, newest first."""

    @abstractmethod
    def delete(self, remote_id: str) -> None:
        """Remove a remote object."""

    @abstractmethod
    def quota(self) -> Dict[str, int]:
        """Return ``{used, total, available}`` in bytes."""


class GoogleDriveReplica(RemoteReplicaAdapter):
    """Google Drive v3 implementation using an OAuth bearer token."""

    API_BASE = "https://www.googleapis.com/drive/v3"
    UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    FOLDER_NAME = "Database Backups"
    FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

    SIMPLE_UPLOAD_LIMIT = 5 * 1024 * 1024
    CHUNK_SIZE = 256 * 1024
    TOKEN_REFRESH_MARGIN = 5 * 60

    def __init__(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        token_expires_at: Optional[float] = None,
        client_id: str = "",
        client_secret: str = "",
        folder_id: Optional[str] = None,
        timeout: float = 60,
        session: Optional[requests.Session] = None,
        on_token_refresh: Optional[Callable[[str, Optional[float]], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the Google Drive replica.

        Args:
            access_token: Bearer credential
            refresh_token: Credential used to obtain a new access token
            token_expires_at: Access token expiry (epoch seconds)
            client_id: OAuth client id, needed for refresh
            client_secret: OAuth client secret, needed for refresh
            folder_id: Backup folder id, looked up or created when missing
            timeout: Per-request timeout in seconds
            session: Optional requests session
            on_token_refresh: Called with the new token and expiry after a refresh
            clock: Time source, epoch seconds
        """
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.token_expires_at = token_expires_at
        self.client_id = client_id
        self.client_secret = client_secret
        self.folder_id = folder_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.on_token_refresh = on_token_refresh
        self.clock = clock

    def upload(self, data: bytes, name: str, on_progress: Optional[ProgressCallback] = None) -> str:
        self._ensure_valid_token()
        folder_id = self._ensure_backup_folder()

        if len(data) < self.SIMPLE_UPLOAD_LIMIT:
            remote_id = self._simple_upload(data, name, folder_id)
            if on_progress:
                on_progress(100)
        else:
            remote_id = self._resumable_upload(data, name, folder_id, on_progress)

        logger.info(f"Uploaded {name} to Google Drive ({len(data)} bytes): {remote_id}")
        return remote_id

    def download(self, remote_id: str, on_progress: Optional[ProgressCallback] = None) -> bytes:
        self._ensure_valid_token()

        response = self._request(
            "GET",
            f"{self.API_BASE}/files/{remote_id}",
            params={"alt": "media"},
            stream=True,
        )

        total = int(response.headers.get("content-length") or 0)
        chunks = []
        downloaded = 0
        try:
            for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                if not chunk:
                    continue
                chunks.append(chunk)
                downloaded += len(chunk)
                if on_progress and total > 0:
                    on_progress(round(downloaded * 100 / total))
        except requests.RequestException as e:
            raise TransportError(f"Download of {remote_id} interrupted: {e}") from e
        finally:
            response.close()

        data = b"".join(chunks)
        if total and len(data) != total:
            raise TransportError(f"Download of {remote_id} incomplete: {len(data)} of {total} bytes")

        return data

    def list(self) -> List[RemoteArtifact]:
        self._ensure_valid_token()
        folder_id = self._ensure_backup_folder()

        artifacts = []
        page_token = None
        while True:
            params = {
                "q": f"'{folder_id}' in parents and name contains '.db' and trashed = false",
                "fields": "nextPageToken, files(id, name, size, createdTime)",
                "orderBy": "createdTime desc",
                "pageSize": 100,
            }
            if page_token:
                params["pageToken"] = page_token

            payload = self._request("GET", f"{self.API_BASE}/files", params=params).json()
            for item in payload.get("files", []):
                artifacts.append(self._parse_artifact(item))

            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        artifacts.sort(key=lambda a: a.created_at, reverse=True)
        return artifacts

    def delete(self, remote_id: str) -> None:
        self._ensure_valid_token()
        self._request("DELETE", f"{self.API_BASE}/files/{remote_id}")

    def quota(self) -> Dict[str, int]:
        self._ensure_valid_token()
        payload = self._request("GET", f"{self.API_BASE}/about", params={"fields": "storageQuota"}).json()
        quota = payload.get("storageQuota", {})
        used = int(quota.get("usage") or 0)
        total = int(quota.get("limit") or 0)
        return {"used": used, "total": total, "available": max(total - used, 0)}

    def _parse_artifact(self, item: Dict[str, Any]) -> RemoteArtifact:
        created = item.get("createdTime")
        return RemoteArtifact(
            id=item["id"],
            name=item.get("name", ""),
            size=int(item.get("size") or 0),
            created_at=parse_timestamp(created) if created else datetime.fromtimestamp(0, tz=timezone.utc),
        )

    def _ensure_valid_token(self) -> None:
        if not self.access_token and self.refresh_token:
            self._refresh_access_token()
            return

        if not self.access_token:
            raise NotAuthenticatedError(
                "No access token available for remote storage",
                suggestions=["Run 'snapkeep remote configure' to store a fresh access token"],
            )

        if self.token_expires_at and self.clock() > self.token_expires_at - self.TOKEN_REFRESH_MARGIN:
            self._refresh_access_token()

    def _refresh_access_token(self) -> None:
        if not self.refresh_token:
            raise NotAuthenticatedError("Access token expired and no refresh token is available")

        try:
            response = self.session.post(
                self.TOKEN_URL,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": self.refresh_token,
                    "grant_type": "refresh_token",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"Token refresh failed: {e}") from e

        if response.status_code in (400, 401, 403):
            raise NotAuthenticatedError(
                f"Token refresh rejected: {response.status_code}",
                details=response.text[:200],
            )
        if not response.ok:
            raise TransportError(f"Token refresh failed: {response.status_code}", status_code=response.status_code)

        payload = response.json()
        self.access_token = payload["access_token"]
        expires_in = payload.get("expires_in")
        self.token_expires_at = self.clock() + float(expires_in) if expires_in else None
        if payload.get("refresh_token"):
            self.refresh_token = payload["refresh_token"]

        logger.info("Refreshed remote storage access token")

        if self.on_token_refresh:
            self.on_token_refresh(self.access_token, self.token_expires_at)

    def _ensure_backup_folder(self) -> str:
        if self.folder_id:
            return self.folder_id

        payload = self._request(
            "GET",
            f"{self.API_BASE}/files",
            params={
                "q": f"name = '{self.FOLDER_NAME}' and mimeType = '{self.FOLDER_MIME_TYPE}' and trashed = false",
                "fields": "files(id, name)",
            },
        ).json()

        files = payload.get("files", [])
        if files:
            self.folder_id = files[0]["id"]
            return self.folder_id

        created = self._request(
            "POST",
            f"{self.API_BASE}/files",
            json={"name": self.FOLDER_NAME, "mimeType": self.FOLDER_MIME_TYPE},
        ).json()
        self.folder_id = created["id"]
        logger.info(f"Created remote backup folder: {self.folder_id}")
        return self.folder_id

    def _simple_upload(self, data: bytes, name: str, folder_id: str) -> str:
        boundary = f"snapkeep-{uuid.uuid4().hex}"
        metadata = json.dumps({"name": name, "parents": [folder_id]})
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{metadata}\r\n"
            f"--{boundary}\r\n"
            "Content-Type: application/octet-stream\r\n\r\n"
        ).encode("utf-8")
        body += data + f"\r\n--{boundary}--".encode("utf-8")

        response = self._request(
            "POST",
            f"{self.UPLOAD_BASE}/files",
            params={"uploadType": "multipart"},
            data=body,
            headers={"Content-Type": f'multipart/related; boundary="{boundary}"'},
        )
        return response.json()["id"]

    def _resumable_upload(
        self,
        data: bytes,
        name: str,
        folder_id: str,
        on_progress: Optional[ProgressCallback],
    ) -> str:
        session_response = self._request(
            "POST",
            f"{self.UPLOAD_BASE}/files",
            params={"uploadType": "resumable"},
            json={"name": name, "parents": [folder_id]},
            headers={"X-Upload-Content-Length": str(len(data))},
        )

        upload_url = session_response.headers.get("location") or session_response.headers.get("Location")
        if not upload_url:
            raise TransportError("No upload URL received for resumable upload")

        total = len(data)
        uploaded = 0
        while uploaded < total:
            end = min(uploaded + self.CHUNK_SIZE, total)
            response = self._request(
                "PUT",
                upload_url,
                data=data[uploaded:end],
                headers={"Content-Range": f"bytes {uploaded}-{end - 1}/{total}"},
                allowed_statuses=(308,),
            )

            if response.status_code == 308:
                uploaded = end
                if on_progress:
                    on_progress(round(uploaded * 100 / total))
                continue

            if on_progress:
                on_progress(100)
            return response.json()["id"]

        raise TransportError("Upload completed but no file id was received")

    def _request(self, method: str, url: str, allowed_statuses: tuple = (), **kwargs: Any) -> requests.Response:
        headers = dict(kwargs.pop("headers", {}) or {})
        headers["Authorization"] = f"Bearer {self.access_token}"

        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.status_code in allowed_statuses:
            return response

        if response.status_code in (401, 403):
            raise NotAuthenticatedError(
                f"Remote storage rejected the credential ({response.status_code})",
                suggestions=["Run 'snapkeep remote configure' to store a fresh access token"],
            )

        if not response.ok:
            raise TransportError(
                f"{method} {url} failed: {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        return response


def create_remote_adapter(
    remote_config: Dict[str, Any],
    on_token_refresh: Optional[Callable[[str, Optional[float]], None]] = None,
) -> Optional[RemoteReplicaAdapter]:
    """Build the configured replica, or None when replication is disabled."""
    if not remote_config.get("enabled"):
        return None

    provider = remote_config.get("provider", "google_drive")
    if provider != "google_drive":
        raise ValueError(f"Unsupported remote storage provider: {provider}")

    return GoogleDriveReplica(
        access_token=remote_config.get("access_token"),
        refresh_token=remote_config.get("refresh_token"),
        token_expires_at=remote_config.get("token_expires_at"),
        client_id=remote_config.get("client_id", ""),
        client_secret=remote_config.get("client_secret", ""),
        folder_id=remote_config.get("folder_id"),
        timeout=remote_config.get("timeout_seconds", 60),
        on_token_refresh=on_token_refresh,
    )
