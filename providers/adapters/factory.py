# providers/adapters/factory.py
import importlib
import inspect
import logging
import pkgutil
from enum import Enum
from typing import Optional

from .base import BaseAdapter

logger = logging.getLogger(__name__)


class Provider(str, Enum):
    GEMINI = "Gemini"
    KLING = "Kling"
    HAILUO = "Hailuo"
    OPENAI = "OpenAI"


# 模型 ID 前缀 -> 供应商，按顺序匹配；未命中一律走 Gemini/Veo
MODEL_PREFIX_TABLE = (
    ("kling-", Provider.KLING),
    ("hailuo-", Provider.HAILUO),
    ("gpt-image-", Provider.OPENAI),
)


def select_provider(model_id: Optional[str]) -> Provider:
    """根据模型 ID 前缀选择供应商（唯一的路由入口）"""
    if model_id:
        for prefix, provider in MODEL_PREFIX_TABLE:
            if model_id.startswith(prefix):
                return provider
    return Provider.GEMINI


class AdapterFactory:
    _adapters = {}  # Provider -> adapter_class
    _discovered = False

    @classmethod
    def register(cls, provider: Provider):
        """装饰器：注册适配器类"""

        def wrapper(adapter_class):
            if not issubclass(adapter_class, BaseAdapter):
                raise TypeError(f"{adapter_class} must inherit from BaseAdapter")
            cls._adapters[provider] = adapter_class
            return adapter_class

        return wrapper

    @classmethod
    def get_adapter_class(cls, provider: Provider):
        if provider not in cls._adapters and not cls._discovered:
            cls._discover_adapters()
        adapter_class = cls._adapters.get(provider)
        if not adapter_class:
            raise ValueError(f"Unsupported provider: {provider}")
        return adapter_class

    @classmethod
    def get_adapter(cls, provider: Provider, **credentials) -> BaseAdapter:
        return cls.get_adapter_class(provider)(**credentials)

    @classmethod
    def _discover_adapters(cls):
        """自动扫描 adapters 包下的所有模块，收集被 @register 装饰的类"""
        cls._discovered = True
        package = importlib.import_module("..adapters", __package__)
        for _, module_name, _ in pkgutil.iter_modules(package.__path__):
            if module_name.startswith("__") or module_name in ("base", "factory"):
                continue
            try:
                module = importlib.import_module(f"..adapters.{module_name}", __package__)
            except ImportError as e:
                logger.warning(f"Skipping adapter module {module_name}, missing dependency: {e}")
                continue
            for name, obj in inspect.getmembers(module, inspect.isclass):
                if issubclass(obj, BaseAdapter) and obj is not BaseAdapter:
                    if getattr(obj, "provider_name", None):
                        cls._adapters[Provider(obj.provider_name)] = obj
