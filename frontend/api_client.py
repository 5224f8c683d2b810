# frontend/api_client.py
import logging
import os
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

BACKEND_URL = os.getenv("FRAMECHAIN_BACKEND_URL", "http://localhost:8000")

# 生成请求可能包含多分钟的轮询
GENERATION_TIMEOUT = 900


class BackendError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class BackendClient:
    """画布客户端访问 FastAPI 后端的同步 HTTP 封装（调用方用 asyncio.to_thread 包装）"""

    def __init__(self, base_url: str = BACKEND_URL, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _json(self, resp: requests.Response) -> Any:
        try:
            data = resp.json()
        except ValueError:
            raise BackendError(f"Malformed response (HTTP {resp.status_code}): {resp.text[:200]}",
                               status_code=resp.status_code)
        if resp.status_code >= 400:
            message = None
            if isinstance(data, dict):
                message = data.get("error") or data.get("detail")
            raise BackendError(str(message or f"HTTP {resp.status_code}"), status_code=resp.status_code)
        return data

    # ---------- 生成 ----------
    def generate_image(self, payload: Dict[str, Any]) -> str:
        resp = self.session.post(self._url("/api/generate-image"), json=payload, timeout=GENERATION_TIMEOUT)
        return self._result_url(self._json(resp))

    def generate_video(self, payload: Dict[str, Any]) -> str:
        resp = self.session.post(self._url("/api/generate-video"), json=payload, timeout=GENERATION_TIMEOUT)
        return self._result_url(self._json(resp))

    @staticmethod
    def _result_url(data: Any) -> str:
        if not isinstance(data, dict) or not data.get("resultUrl"):
            raise BackendError(f"No resultUrl in response: {str(data)[:200]}")
        return data["resultUrl"]

    def generation_status(self, node_id: str) -> Dict[str, Any]:
        resp = self.session.get(self._url(f"/api/generation-status/{node_id}"), timeout=30)
        return self._json(resp)

    # ---------- 媒体 ----------
    def resolve_url(self, url: str) -> str:
        """库内相对路径补全为后端绝对地址；data URI 和绝对地址原样返回"""
        if url.startswith("/"):
            return self._url(url)
        return url

    def fetch_bytes(self, url: str) -> bytes:
        resp = self.session.get(self.resolve_url(url), timeout=120)
        if resp.status_code != 200:
            raise BackendError(f"Failed to fetch {url}: HTTP {resp.status_code}", status_code=resp.status_code)
        return resp.content

    # ---------- Workflow ----------
    def save_workflow(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        resp = self.session.post(self._url("/api/workflows"), json=payload, timeout=60)
        return self._json(resp)

    def list_workflows(self) -> List[Dict[str, Any]]:
        resp = self.session.get(self._url("/api/workflows"), timeout=30)
        return self._json(resp)

    def load_workflow(self, workflow_id: str) -> Dict[str, Any]:
        resp = self.session.get(self._url(f"/api/workflows/{workflow_id}"), timeout=30)
        return self._json(resp)

    def delete_workflow(self, workflow_id: str):
        resp = self.session.delete(self._url(f"/api/workflows/{workflow_id}"), timeout=30)
        if resp.status_code != 204:
            self._json(resp)
