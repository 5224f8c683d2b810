import base64
import logging
import re
import time
from typing import Callable, Optional, Tuple

import requests

from .errors import ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)

# ====================== 全局配置 ======================
api_session = requests.Session()

DATA_URI_PATTERN = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)


# ====================== Base64 工具函数 ======================
def extract_raw_base64(data_uri: Optional[str]) -> Optional[str]:
    """移除 data URI 前缀（data:image/xxx;base64,），纯 base64 原样返回"""
    if not data_uri:
        return None
    clean_data = data_uri.replace("\n", "").replace("\r", "").strip()
    match = DATA_URI_PATTERN.match(clean_data)
    if match:
        return match.group("data")
    return clean_data


def split_data_uri(data_uri: str, default_mime: str = "image/png") -> Tuple[str, bytes]:
    """拆分 data URI，返回 (mime_type, 原始字节)"""
    clean_data = data_uri.replace("\n", "").replace("\r", "").strip()
    match = DATA_URI_PATTERN.match(clean_data)
    if match:
        mime_type, encoded = match.group("mime"), match.group("data")
    else:
        mime_type, encoded = default_mime, clean_data
    try:
        return mime_type, base64.b64decode(encoded)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid base64 data: {e}")


def to_data_uri(raw: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(raw).decode('utf-8')}"


# ====================== 异步任务轮询 ======================
def poll_until(check: Callable[[], Optional[str]], interval: float, timeout: float, label: str) -> str:
    """
    反复调用 check 直到返回非空结果。
    check 返回 None 表示仍在进行中；失败时应直接抛出 ProviderError。
    超出 timeout 秒抛出 ProviderTimeoutError。
    """
    start_time = time.time()
    while time.time() - start_time < timeout:
        result = check()
        if result:
            return result
        time.sleep(interval)
    raise ProviderTimeoutError(f"{label} timed out after {int(timeout)}s")


def download_bytes(url: str, label: str, timeout: int = 120) -> bytes:
    """下载供应商返回的结果文件"""
    try:
        resp = api_session.get(url, timeout=timeout)
    except requests.RequestException as e:
        raise ProviderError(f"Failed to download {label}: {e}")
    if resp.status_code != 200:
        raise ProviderError(f"Failed to download {label}: HTTP {resp.status_code}", status_code=resp.status_code)
    return resp.content


def read_json(resp: requests.Response, label: str) -> dict:
    """解析 JSON 响应，结构异常统一转为 ProviderError"""
    try:
        data = resp.json()
    except ValueError:
        raise ProviderError(f"{label}: malformed response (HTTP {resp.status_code}): {resp.text[:200]}",
                            status_code=resp.status_code)
    if not isinstance(data, dict):
        raise ProviderError(f"{label}: unexpected response body: {str(data)[:200]}", status_code=resp.status_code)
    return data
