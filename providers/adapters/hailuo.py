import logging

import requests

from .base import BaseAdapter, ProviderRequest
from .factory import AdapterFactory, Provider
from ..errors import ProviderError
from ..utils import api_session, download_bytes, poll_until, read_json, to_data_uri, split_data_uri

logger = logging.getLogger(__name__)

HAILUO_BASE_URL = "https://api.minimax.io"
POLL_INTERVAL = 5
POLL_TIMEOUT = 600

MODEL_NAMES = {
    "hailuo-02": "MiniMax-Hailuo-02",
    "hailuo-2.3": "MiniMax-Hailuo-2.3",
    "hailuo-2.3-fast": "MiniMax-Hailuo-2.3-Fast",
}


@AdapterFactory.register(Provider.HAILUO)
class HailuoAdapter(BaseAdapter):
    provider_name = "Hailuo"
    required_credentials = ("api_key",)
    setup_hint = "Hailuo API key not configured. Add HAILUO_API_KEY to .env"

    def __init__(self, api_key: str = None, base_url: str = None):
        super().__init__(api_key=api_key)
        self.base_url = (base_url or HAILUO_BASE_URL).rstrip("/")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.credentials['api_key']}",
            "Content-Type": "application/json",
        }

    def _check_base_resp(self, result: dict):
        base_resp = result.get("base_resp") or {}
        if base_resp.get("status_code", 0) != 0:
            raise ProviderError(f"Hailuo API error: {base_resp.get('status_msg') or 'Unknown error'}",
                                provider=self.provider_name)

    def _get(self, path: str, params: dict) -> dict:
        try:
            resp = api_session.get(f"{self.base_url}{path}", params=params, headers=self._headers(), timeout=30)
        except requests.RequestException as e:
            raise ProviderError(f"Hailuo API request failed: {e}", provider=self.provider_name)
        result = read_json(resp, "Hailuo API")
        self._check_base_resp(result)
        return result

    def generate_image(self, request: ProviderRequest) -> bytes:
        raise ProviderError("Image generation is not supported by Hailuo", provider=self.provider_name)

    def generate_video(self, request: ProviderRequest) -> bytes:
        model_name = MODEL_NAMES.get(request.model, "MiniMax-Hailuo-02")
        payload = {
            "model": model_name,
            "prompt": request.prompt or "",
            "duration": request.duration or 6,
            "resolution": "1080P" if (request.resolution or "").lower() == "1080p" else "768P",
        }
        if request.images:
            payload["first_frame_image"] = self._normalize_image(request.images[0])
        if request.last_frame:
            payload["last_frame_image"] = self._normalize_image(request.last_frame)

        logger.info(f"Hailuo video gen: model={model_name}, duration={payload['duration']}s, "
                    f"first_frame={'first_frame_image' in payload}, last_frame={'last_frame_image' in payload}")
        try:
            resp = api_session.post(f"{self.base_url}/v1/video_generation", json=payload,
                                    headers=self._headers(), timeout=60)
        except requests.RequestException as e:
            raise ProviderError(f"Hailuo API request failed: {e}", provider=self.provider_name)
        if resp.status_code != 200:
            raise ProviderError(f"Hailuo API error: HTTP {resp.status_code}: {resp.text[:200]}",
                                provider=self.provider_name, status_code=resp.status_code)
        result = read_json(resp, "Hailuo API")
        self._check_base_resp(result)
        task_id = result.get("task_id")
        if not task_id:
            raise ProviderError("No task ID returned from Hailuo API", provider=self.provider_name)
        logger.info(f"Hailuo task created: {task_id}")

        def check():
            status_result = self._get("/v1/query/video_generation", {"task_id": task_id})
            status = status_result.get("status")
            logger.debug(f"Hailuo task {task_id} status: {status}")
            if status == "Success":
                file_id = status_result.get("file_id")
                if not file_id:
                    raise ProviderError("No file ID in successful Hailuo response", provider=self.provider_name)
                return file_id
            if status == "Fail":
                raise ProviderError(f"Hailuo generation failed: {status_result.get('error_message') or 'Unknown error'}",
                                    provider=self.provider_name)
            return None

        file_id = poll_until(check, POLL_INTERVAL, POLL_TIMEOUT, "Hailuo generation")
        file_info = self._get("/v1/files/retrieve", {"file_id": file_id}).get("file") or {}
        download_url = file_info.get("download_url")
        if not download_url:
            raise ProviderError("No download URL returned from Hailuo", provider=self.provider_name)
        return download_bytes(download_url, "video from Hailuo", timeout=300)

    @staticmethod
    def _normalize_image(image: str) -> str:
        # Hailuo 接受带前缀的 data URI，纯 base64 时补全前缀
        if image.startswith("data:"):
            return image
        mime_type, raw = split_data_uri(image)
        return to_data_uri(raw, mime_type)
