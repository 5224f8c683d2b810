# providers/adapters/base.py
from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, Field

from ..errors import ConfigurationError, ProviderError


class ProviderRequest(BaseModel):
    """统一的生成请求，图片均为已解析好的 base64 data URI"""
    kind: str = "image"  # image / video
    model: Optional[str] = None
    prompt: str = ""
    images: List[str] = Field(default_factory=list)
    last_frame: Optional[str] = None
    aspect_ratio: str = "Auto"
    resolution: str = "Auto"
    duration: Optional[int] = None


class BaseAdapter(ABC):
    provider_name = ""
    # 需要的凭证字段名，缺失时在发起网络请求前报错
    required_credentials: tuple = ()
    setup_hint = ""

    def __init__(self, **credentials):
        self.credentials = credentials

    def check_credentials(self):
        missing = [name for name in self.required_credentials if not self.credentials.get(name)]
        if missing:
            raise ConfigurationError(self.setup_hint or f"{self.provider_name} credentials not configured")

    def generate(self, request: ProviderRequest) -> bytes:
        """
        执行一次生成，返回原始媒体字节。
        :raises ConfigurationError: 凭证缺失
        :raises ProviderError: 任何非成功终态
        """
        self.check_credentials()
        if request.kind == "video":
            return self.generate_video(request)
        return self.generate_image(request)

    @abstractmethod
    def generate_image(self, request: ProviderRequest) -> bytes:
        pass

    def generate_video(self, request: ProviderRequest) -> bytes:
        raise ProviderError(f"Video generation is not supported by {self.provider_name}", provider=self.provider_name)
