import logging
import time

import jwt
import requests

from .base import BaseAdapter, ProviderRequest
from .factory import AdapterFactory, Provider
from ..errors import ConfigurationError, ProviderError
from ..utils import api_session, download_bytes, extract_raw_base64, poll_until, read_json

logger = logging.getLogger(__name__)

KLING_BASE_URL = "https://api-singapore.klingai.com"

TOKEN_TTL_SECONDS = 1800
IMAGE_POLL_INTERVAL = 3
IMAGE_POLL_TIMEOUT = 120
VIDEO_POLL_INTERVAL = 5
VIDEO_POLL_TIMEOUT = 300
MAX_SUBJECT_IMAGES = 4

VIDEO_MODEL_NAMES = {
    "kling-v1", "kling-v1-5", "kling-v1-6", "kling-v2-master",
    "kling-v2-1", "kling-v2-1-master", "kling-v2-5-turbo",
}
IMAGE_MODEL_NAMES = {"kling-v1", "kling-v1-5", "kling-v2", "kling-v2-new", "kling-v2-1"}

IMAGE_RATIO_MAP = {
    "Auto": "1:1", "1:1": "1:1", "16:9": "16:9", "9:16": "9:16",
    "4:3": "4:3", "3:4": "3:4", "3:2": "3:2", "2:3": "2:3",
    "21:9": "21:9", "5:4": "4:3", "4:5": "3:4",
}
# multi-image2image 的 Auto 默认横屏
MULTI_IMAGE_RATIO_MAP = dict(IMAGE_RATIO_MAP, Auto="16:9")
VIDEO_RATIO_MAP = {"16:9": "16:9", "9:16": "9:16", "1:1": "1:1"}


def generate_kling_jwt(access_key: str, secret_key: str, now: int = None) -> str:
    """生成 Kling API 的 JWT（HS256，有效期 30 分钟，nbf 提前 5 秒容忍时钟偏差）"""
    if not access_key or not secret_key:
        raise ConfigurationError("Kling API credentials not configured")
    now = int(time.time()) if now is None else now
    payload = {
        "iss": access_key,
        "exp": now + TOKEN_TTL_SECONDS,
        "nbf": now - 5,
    }
    return jwt.encode(payload, secret_key, algorithm="HS256", headers={"typ": "JWT"})


@AdapterFactory.register(Provider.KLING)
class KlingAdapter(BaseAdapter):
    provider_name = "Kling"
    required_credentials = ("access_key", "secret_key")
    setup_hint = "Kling API credentials not configured. Add KLING_ACCESS_KEY and KLING_SECRET_KEY to .env"

    def __init__(self, access_key: str = None, secret_key: str = None, base_url: str = None):
        super().__init__(access_key=access_key, secret_key=secret_key)
        self.base_url = (base_url or KLING_BASE_URL).rstrip("/")

    def _headers(self, token: str) -> dict:
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }

    def _token(self) -> str:
        # 每次调用重新签发，token 只在本次调用内使用
        return generate_kling_jwt(self.credentials["access_key"], self.credentials["secret_key"])

    # ------------------------------------------------------------------ 任务提交/轮询
    def _submit(self, path: str, body: dict, token: str) -> str:
        try:
            resp = api_session.post(f"{self.base_url}{path}", json=body, headers=self._headers(token), timeout=60)
        except requests.RequestException as e:
            raise ProviderError(f"Kling API request failed: {e}", provider=self.provider_name)
        result = read_json(resp, "Kling API")
        if result.get("code") != 0:
            raise ProviderError(f"Kling API error: {result.get('message') or 'Failed to create task'}",
                                provider=self.provider_name, status_code=resp.status_code)
        task_id = (result.get("data") or {}).get("task_id")
        if not task_id:
            raise ProviderError("No task ID returned from Kling API", provider=self.provider_name)
        logger.info(f"Kling task created: {task_id} ({path})")
        return task_id

    def _poll(self, path: str, task_id: str, token: str, result_key: str,
              interval: float, timeout: float) -> str:
        url = f"{self.base_url}{path}/{task_id}"

        def check():
            try:
                resp = api_session.get(url, headers=self._headers(token), timeout=30)
            except requests.RequestException as e:
                raise ProviderError(f"Kling API request failed: {e}", provider=self.provider_name)
            result = read_json(resp, "Kling API")
            if result.get("code") != 0:
                raise ProviderError(f"Kling API error: {result.get('message') or 'Unknown error'}",
                                    provider=self.provider_name, status_code=resp.status_code)
            data = result.get("data") or {}
            status = data.get("task_status")
            logger.debug(f"Kling task {task_id} status: {status}")
            if status == "succeed":
                items = (data.get("task_result") or {}).get(result_key) or []
                if not items or not items[0].get("url"):
                    raise ProviderError(f"No {result_key} URL in successful Kling response",
                                        provider=self.provider_name)
                return items[0]["url"]
            if status == "failed":
                raise ProviderError(f"Kling generation failed: {data.get('task_status_msg') or 'Unknown error'}",
                                    provider=self.provider_name)
            return None

        return poll_until(check, interval, timeout, "Kling generation")

    # ------------------------------------------------------------------ 图像
    def generate_image(self, request: ProviderRequest) -> bytes:
        if len(request.images) > 1:
            image_url = self._multi_image(request)
        else:
            image_url = self._single_image(request)
        return download_bytes(image_url, "image from Kling")

    def _single_image(self, request: ProviderRequest) -> str:
        token = self._token()
        model_name = request.model if request.model in IMAGE_MODEL_NAMES else "kling-v2-1"
        body = {
            "model_name": model_name,
            "prompt": request.prompt,
            "aspect_ratio": IMAGE_RATIO_MAP.get(request.aspect_ratio, "1:1"),
            "n": 1,
        }
        if request.images:
            body["image"] = extract_raw_base64(request.images[0])
        logger.info(f"Kling image gen: model={model_name}, ratio={body['aspect_ratio']}, "
                    f"reference={bool(request.images)}")
        task_id = self._submit("/v1/images/generations", body, token)
        return self._poll("/v1/images/generations", task_id, token, "images",
                          IMAGE_POLL_INTERVAL, IMAGE_POLL_TIMEOUT)

    def _multi_image(self, request: ProviderRequest) -> str:
        token = self._token()
        # multi-image2image 只支持 kling-v2 / kling-v2-1
        model_name = "kling-v2-1" if request.model == "kling-v2-1" else "kling-v2"
        subjects = request.images[:MAX_SUBJECT_IMAGES]
        body = {
            "model_name": model_name,
            "prompt": request.prompt,
            "aspect_ratio": MULTI_IMAGE_RATIO_MAP.get(request.aspect_ratio, "16:9"),
            "n": 1,
            "subject_image_list": [{"subject_image": extract_raw_base64(img)} for img in subjects],
        }
        logger.info(f"Kling multi-image gen: model={model_name}, subjects={len(subjects)}")
        task_id = self._submit("/v1/images/multi-image2image", body, token)
        return self._poll("/v1/images/multi-image2image", task_id, token, "images",
                          IMAGE_POLL_INTERVAL, IMAGE_POLL_TIMEOUT)

    # ------------------------------------------------------------------ 视频
    def generate_video(self, request: ProviderRequest) -> bytes:
        token = self._token()
        model_name = request.model if request.model in VIDEO_MODEL_NAMES else "kling-v2-1"
        start_frame = request.images[0] if request.images else None
        body = {
            "model_name": model_name,
            # 首尾帧模式需要 pro
            "mode": "pro" if (start_frame and request.last_frame) else "std",
            # Kling 只接受 5 / 10 秒
            "duration": "10" if (request.duration or 5) >= 10 else "5",
            "prompt": request.prompt or "",
        }
        if start_frame:
            endpoint = "image2video"
            body["image"] = extract_raw_base64(start_frame)
            if request.last_frame:
                body["image_tail"] = extract_raw_base64(request.last_frame)
        else:
            endpoint = "text2video"
            body["aspect_ratio"] = VIDEO_RATIO_MAP.get(request.aspect_ratio, "16:9")
        logger.info(f"Kling video gen: model={model_name}, endpoint={endpoint}, mode={body['mode']}")
        task_id = self._submit(f"/v1/videos/{endpoint}", body, token)
        video_url = self._poll(f"/v1/videos/{endpoint}", task_id, token, "videos",
                               VIDEO_POLL_INTERVAL, VIDEO_POLL_TIMEOUT)
        return download_bytes(video_url, "video from Kling", timeout=300)
