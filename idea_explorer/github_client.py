from __future__ import annotations

import base64
import os
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from .errors import ConflictFault, ContentStoreError, ValidationFault
from .schemas import DirectoryEntry, FileContent
from .settings import settings


class GitHubClient:
    """Versioned file store on top of the GitHub contents API.

    "Not found" is an ordinary answer here (None / empty list), so callers
    can branch on it; only unexpected statuses raise ContentStoreError.
    Construct one instance per job run and pass it in.
    """

    def __init__(
        self,
        repo: str,
        branch: str = "main",
        token: Optional[str] = None,
        api_base: str = "https://api.github.com",
        timeout_s: float = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        parts = (repo or "").split("/")
        if len(parts) != 2 or not parts[0] or not parts[1]:
            raise ValidationFault(f'Invalid repo format: "{repo}". Expected "owner/repo"')
        self.owner, self.name = parts
        self.repo = repo
        self.branch = branch
        self.api_base = api_base.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()
        self._token = token

    @classmethod
    def from_settings(cls, session: Optional[requests.Session] = None) -> "GitHubClient":
        cfg = settings.github
        return cls(
            repo=cfg.get("repo", ""),
            branch=cfg.get("branch", "main"),
            token=os.getenv("GITHUB_PAT"),
            api_base=cfg.get("api_base", "https://api.github.com"),
            timeout_s=cfg.get("request_timeout_s", 30),
            session=session,
        )

    def blob_url(self, path: str) -> str:
        return f"https://github.com/{self.repo}/blob/{self.branch}/{path}"

    def raw_url(self, path: str) -> str:
        return f"https://raw.githubusercontent.com/{self.repo}/{self.branch}/{path}"

    def get_file(self, path: str) -> Optional[FileContent]:
        resp = self._request("GET", "getFile", path, params={"ref": self.branch})
        if resp.status_code == 404:
            return None
        self._raise_unexpected(resp, "getFile")
        data = resp.json()
        if not isinstance(data, dict) or data.get("type") != "file" or not data.get("content"):
            return None
        return FileContent(
            content=_decode_base64(data["content"]),
            sha=data["sha"],
            path=data.get("path", path),
        )

    def create_file(self, path: str, content: str, message: str) -> str:
        try:
            return self._put("createFile", path, content, message)
        except ConflictFault:
            current = self.get_file(path)
            if current is None:
                # Vanished between the conflict and the re-fetch; do not loop
                raise
            return self.update_file(path, content, current.sha, message)

    def update_file(self, path: str, content: str, sha: str, message: str) -> str:
        return self._put("updateFile", path, content, message, sha=sha)

    def list_directory(self, path: str) -> List[DirectoryEntry]:
        resp = self._request("GET", "listDirectory", path, params={"ref": self.branch})
        if resp.status_code == 404:
            return []
        self._raise_unexpected(resp, "listDirectory")
        data = resp.json()
        if not isinstance(data, list):
            return []
        return [
            DirectoryEntry(
                name=entry["name"],
                path=entry["path"],
                type="dir" if entry.get("type") == "dir" else "file",
                sha=entry.get("sha", ""),
            )
            for entry in data
        ]

    def _put(self, operation: str, path: str, content: str, message: str, sha: Optional[str] = None) -> str:
        body: Dict[str, Any] = {
            "message": message,
            "content": _encode_base64(content),
            "branch": self.branch,
        }
        if sha:
            body["sha"] = sha
        resp = self._request("PUT", operation, path, json=body)
        # 422 is what GitHub answers for an existing path written without a sha
        if resp.status_code == 409 or (resp.status_code == 422 and sha is None):
            raise ConflictFault(path)
        self._raise_unexpected(resp, operation)
        data = resp.json() or {}
        return (data.get("content") or {}).get("html_url") or ""

    def _request(self, method: str, operation: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.api_base}/repos/{self.owner}/{self.name}/contents/{quote(path)}"
        try:
            return self.session.request(method, url, headers=self._headers(), timeout=self.timeout_s, **kwargs)
        except requests.RequestException as e:
            raise ContentStoreError(operation, cause=e) from e

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def _raise_unexpected(resp: requests.Response, operation: str) -> None:
        if 200 <= resp.status_code < 300:
            return
        raise ContentStoreError(operation, status=resp.status_code, cause=resp.text[:200])


def _encode_base64(s: str) -> str:
    return base64.b64encode(s.encode("utf-8")).decode("ascii")


def _decode_base64(s: str) -> str:
    return base64.b64decode(s.replace("\n", "")).decode("utf-8")
