import base64
import logging

import requests

from .base import BaseAdapter, ProviderRequest
from .factory import AdapterFactory, Provider
from ..errors import ProviderError
from ..utils import api_session, read_json, split_data_uri

logger = logging.getLogger(__name__)

OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-image-1.5"

# 只支持三种离散尺寸，按横竖方向就近映射
SIZE_MAP = {
    "1:1": "1024x1024",
    "16:9": "1536x1024", "4:3": "1536x1024", "3:2": "1536x1024", "5:4": "1536x1024", "21:9": "1536x1024",
    "9:16": "1024x1536", "3:4": "1024x1536", "2:3": "1024x1536", "4:5": "1024x1536",
    "Auto": "auto",
}
QUALITY_MAP = {"1K": "low", "2K": "medium", "4K": "high", "Auto": "auto"}


def map_size(aspect_ratio: str) -> str:
    return SIZE_MAP.get(aspect_ratio, "auto")


def map_quality(resolution: str) -> str:
    return QUALITY_MAP.get(resolution, "auto")


@AdapterFactory.register(Provider.OPENAI)
class OpenAIAdapter(BaseAdapter):
    provider_name = "OpenAI"
    required_credentials = ("api_key",)
    setup_hint = "OpenAI API key not configured. Add OPENAI_API_KEY to .env"

    def __init__(self, api_key: str = None, base_url: str = None):
        super().__init__(api_key=api_key)
        self.base_url = (base_url or OPENAI_BASE_URL).rstrip("/")

    def generate_image(self, request: ProviderRequest) -> bytes:
        model_name = request.model or DEFAULT_MODEL
        size = map_size(request.aspect_ratio)
        quality = map_quality(request.resolution)
        params = {"model": model_name, "prompt": request.prompt}
        # auto 为默认行为，不传
        if size != "auto":
            params["size"] = size
        if quality != "auto":
            params["quality"] = quality

        headers = {"Authorization": f"Bearer {self.credentials['api_key']}"}
        try:
            if request.images:
                # 图生图：edits 端点，multipart 上传
                logger.info(f"OpenAI edits: model={model_name}, images={len(request.images)}, size={size}")
                files = []
                for idx, image in enumerate(request.images):
                    mime_type, raw = split_data_uri(image)
                    ext = mime_type.split("/")[-1].replace("jpeg", "jpg")
                    files.append(("image[]", (f"input_{idx}.{ext}", raw, mime_type)))
                resp = api_session.post(f"{self.base_url}/images/edits", data=params, files=files,
                                        headers=headers, timeout=300)
            else:
                logger.info(f"OpenAI generations: model={model_name}, size={size}, quality={quality}")
                resp = api_session.post(f"{self.base_url}/images/generations", json=params,
                                        headers=headers, timeout=300)
        except requests.RequestException as e:
            raise ProviderError(f"OpenAI API request failed: {e}", provider=self.provider_name)

        result = read_json(resp, "OpenAI API")
        if resp.status_code != 200:
            message = (result.get("error") or {}).get("message") or resp.text[:200]
            raise ProviderError(f"OpenAI API error ({resp.status_code}): {message}",
                                provider=self.provider_name, status_code=resp.status_code)
        items = result.get("data") or []
        if not items or not items[0].get("b64_json"):
            raise ProviderError("No image data returned from OpenAI", provider=self.provider_name)
        return base64.b64decode(items[0]["b64_json"])
