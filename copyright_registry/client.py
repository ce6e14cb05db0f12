"""
HTTP client for the registry API, used by the command-line tasks.
"""

from typing import Any, Dict, List, Optional

import requests
import structlog

logger = structlog.get_logger()


class RegistryClientError(Exception):
    """A registry API call returned an error response."""

    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.status_code = status_code
        self.code = code
        self.message = message


class RegistryClient:
    """Thin wrapper over the registry HTTP API acting for one caller address."""

    def __init__(self, base_url: str, caller: Optional[str] = None, session=None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.caller = caller
        self.session = session or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {"X-Caller-Address": self.caller} if self.caller else {}
        resp = self.session.request(
            method, f"{self.base_url}{path}", json=payload, headers=headers, timeout=self.timeout,
        )
        if resp.status_code >= 400:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            code = body.get("error", "http_error")
            message = body.get("message") or str(body.get("detail", resp.text))
            logger.debug("Registry API error", path=path, status_code=resp.status_code, error=code)
            raise RegistryClientError(resp.status_code, code, message)
        return resp.json()

    def info(self) -> Dict[str, Any]:
        return self._request("GET", "/registry")

    def register_author(self, author_id: int) -> Dict[str, Any]:
        return self._request("POST", "/authors", {"author_id": author_id})

    def is_registered_author(self, address: str) -> bool:
        return self._request("GET", f"/authors/{address}/registered")["registered"]

    def get_author_stats(self, address: str) -> Dict[str, Any]:
        return self._request("GET", f"/authors/{address}")

    def get_author_works(self, address: str) -> List[int]:
        return self._request("GET", f"/authors/{address}/works")["work_ids"]

    def register_work(self, content_hash: int, title: str, category: str) -> int:
        data = self._request("POST", "/works", {
            "content_hash": content_hash, "title": title, "category": category,
        })
        return data["work_id"]

    def get_work_info(self, work_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/works/{work_id}")

    def mark_work_as_verified(self, work_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/works/{work_id}/verify")

    def file_dispute(self, work_id: int, content_hash: int) -> int:
        data = self._request("POST", f"/works/{work_id}/disputes", {"content_hash": content_hash})
        return data["dispute_index"]

    def get_dispute_count(self, work_id: int) -> int:
        return self._request("GET", f"/works/{work_id}/disputes")["dispute_count"]

    def get_dispute_info(self, work_id: int, dispute_index: int) -> Dict[str, Any]:
        return self._request("GET", f"/works/{work_id}/disputes/{dispute_index}")

    def resolve_dispute(self, work_id: int, dispute_index: int) -> str:
        data = self._request("POST", f"/works/{work_id}/disputes/{dispute_index}/resolve")
        return data["request_id"]
