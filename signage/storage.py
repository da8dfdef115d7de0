import logging
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import quote

import requests

from signage.media import MediaItem, Playlist, classify_media


MEDIA_ROOT = "images"


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StorageObject:
    full_path: str
    name: str


def kiosk_prefix(kiosk_id: str) -> str:
    return f"{MEDIA_ROOT}/{kiosk_id}/"


def kiosk_object_path(kiosk_id: str, filename: str) -> str:
    return f"{kiosk_prefix(kiosk_id)}{filename}"


class FirebaseStorageClient:
    def __init__(self, cfg: Dict, session: Optional[requests.Session] = None) -> None:
        bucket = str(cfg.get("storage_bucket") or "").strip()
        if not bucket:
            raise ValueError("storage_bucket is required")
        api_url = str(cfg.get("storage_api_url") or "").rstrip("/")
        self._base_url = f"{api_url}/b/{quote(bucket, safe='')}/o"
        self._api_key = str(cfg.get("api_key") or "")
        self._auth_token = str(cfg.get("auth_token") or "")
        self._timeout = int(cfg.get("request_timeout_sec") or 15)
        self._session = session if session is not None else requests.Session()

    def close(self) -> None:
        self._session.close()

    def _object_url(self, path: str) -> str:
        return f"{self._base_url}/{quote(path, safe='')}"

    def _params(self, **extra: str) -> Dict[str, str]:
        params = {k: v for k, v in extra.items() if v is not None}
        if self._api_key:
            params["key"] = self._api_key
        return params

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self._auth_token:
            headers["Authorization"] = f"Firebase {self._auth_token}"
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            resp = self._session.request(method, url, timeout=self._timeout, **kwargs)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise StorageError(f"{method} {url} failed: {exc}") from exc
        return resp

    def _json(self, resp: requests.Response) -> Dict:
        try:
            data = resp.json()
        except ValueError as exc:
            raise StorageError(f"Invalid JSON from storage: {exc}") from exc
        if not isinstance(data, dict):
            raise StorageError("Unexpected storage response")
        return data

    def list(self, prefix: str) -> List[StorageObject]:
        objects: List[StorageObject] = []
        page_token: Optional[str] = None
        while True:
            params = self._params(prefix=prefix, delimiter="/", pageToken=page_token)
            data = self._json(self._request("GET", self._base_url, params=params, headers=self._headers()))
            for entry in data.get("items") or []:
                full_path = entry.get("name") if isinstance(entry, dict) else None
                if not isinstance(full_path, str) or not full_path.startswith(prefix):
                    continue
                name = full_path[len(prefix):]
                if not name or "/" in name:
                    continue
                objects.append(StorageObject(full_path=full_path, name=name))
            page_token = data.get("nextPageToken")
            if not page_token:
                return objects

    def download_url(self, path: str) -> str:
        data = self._json(self._request("GET", self._object_url(path), params=self._params(), headers=self._headers()))
        url = f"{self._object_url(path)}?alt=media"
        tokens = str(data.get("downloadTokens") or "")
        token = tokens.split(",")[0].strip()
        if token:
            url += f"&token={quote(token, safe='')}"
        return url

    def read_bytes(self, path: str) -> bytes:
        resp = self._request("GET", self._object_url(path), params=self._params(alt="media"), headers=self._headers())
        return resp.content

    def upload(self, path: str, data: bytes, content_type: str) -> None:
        self._request(
            "POST",
            self._base_url,
            params=self._params(uploadType="media", name=path),
            headers=self._headers({"Content-Type": content_type or "application/octet-stream"}),
            data=data,
        )
        logging.info("Uploaded %s (%d bytes)", path, len(data))

    def delete(self, path: str) -> None:
        self._request("DELETE", self._object_url(path), params=self._params(), headers=self._headers())
        logging.info("Deleted %s", path)


def list_playlist(storage, kiosk_id: str, sort: bool = False) -> Playlist:
    objects = storage.list(kiosk_prefix(kiosk_id))
    if sort:
        objects = sorted(objects, key=lambda obj: obj.full_path)
    items = [
        MediaItem(
            id=obj.full_path,
            display_name=obj.name,
            url=storage.download_url(obj.full_path),
            kind=classify_media(obj.name),
        )
        for obj in objects
    ]
    return Playlist(kiosk_id, tuple(items))
