import logging
import time

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .base import BaseAdapter, ProviderRequest
from .factory import AdapterFactory, Provider
from ..errors import ProviderError, ProviderTimeoutError
from ..utils import download_bytes, split_data_uri

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "gemini-3-pro-image-preview"
DEFAULT_VIDEO_MODEL = "veo-3.1-fast-generate-preview"
VIDEO_MODEL_NAMES = {
    "veo-3.1": "veo-3.1-generate-preview",
    "veo-3.1-fast": "veo-3.1-fast-generate-preview",
}
VIDEO_POLL_INTERVAL = 5
VIDEO_POLL_TIMEOUT = 600

# Gemini 图像只支持部分比例，其余就近映射
IMAGE_RATIO_MAP = {
    "1:1": "1:1", "3:4": "3:4", "4:3": "4:3", "9:16": "9:16", "16:9": "16:9",
    "3:2": "4:3", "2:3": "3:4", "5:4": "4:3", "4:5": "3:4", "21:9": "16:9",
}


def map_image_ratio(aspect_ratio: str) -> str:
    return IMAGE_RATIO_MAP.get(aspect_ratio, "1:1")


def map_image_model(model_id: str) -> str:
    if model_id and model_id.startswith("gemini-"):
        return model_id
    return DEFAULT_IMAGE_MODEL


def map_video_model(model_id: str) -> str:
    if not model_id:
        return DEFAULT_VIDEO_MODEL
    if model_id in VIDEO_MODEL_NAMES:
        return VIDEO_MODEL_NAMES[model_id]
    if model_id.startswith("veo-") and model_id.endswith("-preview"):
        return model_id
    return DEFAULT_VIDEO_MODEL


def _to_image(data_uri: str) -> types.Image:
    mime_type, raw = split_data_uri(data_uri)
    return types.Image(image_bytes=raw, mime_type=mime_type)


@AdapterFactory.register(Provider.GEMINI)
class GeminiAdapter(BaseAdapter):
    provider_name = "Gemini"
    required_credentials = ("api_key",)
    setup_hint = "Server missing API Key config. Add GEMINI_API_KEY to .env"

    def __init__(self, api_key: str = None, client_factory=None):
        super().__init__(api_key=api_key)
        self._client_factory = client_factory or genai.Client

    def _client(self):
        return self._client_factory(api_key=self.credentials["api_key"])

    def generate(self, request: ProviderRequest) -> bytes:
        try:
            return super().generate(request)
        except genai_errors.APIError as e:
            raise ProviderError(f"Gemini API error: {e}", provider=self.provider_name, status_code=e.code)

    # ------------------------------------------------------------------ 图像（同步）
    def generate_image(self, request: ProviderRequest) -> bytes:
        model_name = map_image_model(request.model)
        contents = [request.prompt]
        for image in request.images:
            mime_type, raw = split_data_uri(image)
            contents.append(types.Part.from_bytes(data=raw, mime_type=mime_type))

        image_size = request.resolution if request.resolution in ("2K", "4K") else "1K"
        logger.info(f"Gemini image gen: model={model_name}, images={len(request.images)}, size={image_size}")
        response = self._client().models.generate_content(
            model=model_name,
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE"],
                image_config=types.ImageConfig(
                    aspect_ratio=map_image_ratio(request.aspect_ratio),
                    image_size=image_size,
                ),
            ),
        )

        for candidate in response.candidates or []:
            content = candidate.content
            for part in (content.parts if content else None) or []:
                if part.inline_data is not None and part.inline_data.data:
                    return part.inline_data.data
        raise ProviderError("No image data returned from provider", provider=self.provider_name)

    # ------------------------------------------------------------------ 视频（异步 operation）
    def generate_video(self, request: ProviderRequest) -> bytes:
        model_name = map_video_model(request.model)
        config = types.GenerateVideosConfig(
            number_of_videos=1,
            aspect_ratio="9:16" if request.aspect_ratio == "9:16" else "16:9",
            resolution="1080p" if (request.resolution or "").lower() == "1080p" else "720p",
            duration_seconds=request.duration or 8,
        )
        if request.last_frame:
            # 首尾帧插值续写
            config.last_frame = _to_image(request.last_frame)

        client = self._client()
        kwargs = {
            "model": model_name,
            "prompt": request.prompt or "A cinematic video",
            "config": config,
        }
        if request.images:
            kwargs["image"] = _to_image(request.images[0])

        logger.info(f"Veo video gen: model={model_name}, image={bool(request.images)}, "
                    f"last_frame={bool(request.last_frame)}")
        operation = client.models.generate_videos(**kwargs)

        start_time = time.time()
        while not operation.done:
            if time.time() - start_time > VIDEO_POLL_TIMEOUT:
                raise ProviderTimeoutError(f"Veo generation timed out after {VIDEO_POLL_TIMEOUT}s",
                                           provider=self.provider_name)
            time.sleep(VIDEO_POLL_INTERVAL)
            operation = client.operations.get(operation)

        if operation.error:
            raise ProviderError(f"Veo generation failed: {operation.error}", provider=self.provider_name)
        videos = (operation.response.generated_videos if operation.response else None) or []
        uri = videos[0].video.uri if videos and videos[0].video else None
        if not uri:
            raise ProviderError("No video URI returned.", provider=self.provider_name)

        # 服务端下载，Key 不暴露给前端
        separator = "&" if "?" in uri else "?"
        return download_bytes(f"{uri}{separator}key={self.credentials['api_key']}", "video from Veo", timeout=300)
