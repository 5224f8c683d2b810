# backend/core/media_library.py
import io
import json
import logging
import os
import uuid
from typing import Optional, Tuple
from urllib.parse import urlparse

from PIL import Image

from providers.utils import DATA_URI_PATTERN, split_data_uri, to_data_uri
from ..models.schemas import AssetMetadata

logger = logging.getLogger(__name__)

KINDS = ("images", "videos")
LIBRARY_PREFIX = "/library/"

MIME_BY_EXT = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}

# data URI mime -> (kind, 扩展名)，用于 workflow 保存时把内联数据落盘
DATA_URI_TARGETS = {
    "image/png": ("images", "png"),
    "image/jpeg": ("images", "jpg"),
    "image/jpg": ("images", "jpg"),
    "image/webp": ("images", "webp"),
    "image/gif": ("images", "gif"),
    "video/mp4": ("videos", "mp4"),
    "video/webm": ("videos", "webm"),
}


def inspect_image(image_bytes: bytes) -> Tuple[int, int, str]:
    """使用 PIL 验证图像，返回 (width, height, 扩展名)"""
    try:
        img = Image.open(io.BytesIO(image_bytes))
        width, height = img.size
        fmt = img.format.lower() if img.format else "png"
    except Exception as e:
        raise ValueError(f"Invalid image data: {e}")
    if fmt in ("jpeg", "jpg"):
        return width, height, "jpg"
    if fmt in ("png", "gif", "webp"):
        return width, height, fmt
    return width, height, "png"


class MediaLibrary:
    """
    生成结果的文件库，目录结构：
        <root>/images/<id>.<ext> + <id>.json
        <root>/videos/<id>.<ext> + <id>.json
    对外 URL 形如 /library/images/<id>.png
    """

    def __init__(self, root: str):
        self.root = os.path.abspath(root)
        for kind in KINDS:
            os.makedirs(os.path.join(self.root, kind), exist_ok=True)

    def kind_dir(self, kind: str) -> str:
        if kind not in KINDS:
            raise ValueError(f"Unknown library kind: {kind}")
        return os.path.join(self.root, kind)

    def safe_path(self, relative_path: str) -> Optional[str]:
        """库内相对路径 -> 绝对路径，越界（路径穿越）返回 None"""
        full_path = os.path.abspath(os.path.join(self.root, relative_path))
        if not full_path.startswith(self.root + os.sep):
            return None
        return full_path

    def local_path(self, ref: str) -> Optional[str]:
        """/library/... 路径或 path 部分为 /library/... 的 http(s) URL -> 本地文件路径"""
        path = ref
        if ref.startswith("http://") or ref.startswith("https://"):
            try:
                path = urlparse(ref).path
            except ValueError:
                logger.warning(f"Failed to parse URL: {ref[:100]}")
                return None
        if not path.startswith(LIBRARY_PREFIX):
            return None
        return self.safe_path(path[len(LIBRARY_PREFIX):])

    # ---------- 引用解析 ----------
    def resolve_to_base64(self, ref: Optional[str]) -> Optional[str]:
        """
        把图像引用解析为 base64 data URI。
        data URI 原样返回；库文件读入后编码；无法解析返回 None（调用方丢弃）。
        """
        if not ref:
            return None
        if ref.startswith("data:"):
            return ref

        file_path = self.local_path(ref)
        if file_path and os.path.isfile(file_path):
            with open(file_path, "rb") as f:
                raw = f.read()
            ext = os.path.splitext(file_path)[1].lower()
            return to_data_uri(raw, MIME_BY_EXT.get(ext, "image/png"))
        if file_path:
            logger.warning(f"File not found for base64 conversion: {file_path}")

        logger.warning(f"Could not resolve image to base64: {ref[:100]}")
        return None

    def resolve_to_bytes(self, ref: Optional[str]) -> Optional[bytes]:
        data_uri = self.resolve_to_base64(ref)
        if not data_uri:
            return None
        try:
            return split_data_uri(data_uri)[1]
        except ValueError as e:
            logger.warning(f"Invalid base64 reference dropped: {e}")
            return None

    # ---------- 持久化 ----------
    def persist(self, data: bytes, kind: str, asset_id: str, ext: str) -> str:
        """写入 <kind>/<asset_id>.<ext>，返回 /library URL；同 ID 重复写入直接覆盖"""
        filename = f"{asset_id}.{ext}"
        file_path = os.path.join(self.kind_dir(kind), filename)
        with open(file_path, "wb") as f:
            f.write(data)
        return f"{LIBRARY_PREFIX}{kind}/{filename}"

    def file_path_for(self, kind: str, filename: str) -> str:
        return os.path.join(self.kind_dir(kind), filename)

    def write_sidecar(self, kind: str, metadata: AssetMetadata):
        sidecar_path = os.path.join(self.kind_dir(kind), f"{metadata.id}.json")
        with open(sidecar_path, "w", encoding="utf-8") as f:
            json.dump(metadata.dict(by_alias=True, exclude_none=True), f, ensure_ascii=False, indent=2)

    def clear_sidecar(self, kind: str, asset_id: str) -> bool:
        """删除上一次生成留下的 sidecar，状态查询随即回到 pending"""
        sidecar_path = os.path.join(self.kind_dir(kind), f"{asset_id}.json")
        if not os.path.isfile(sidecar_path):
            return False
        os.remove(sidecar_path)
        return True

    def find_result(self, node_id: str) -> Optional[Tuple[str, AssetMetadata]]:
        """按节点 ID 查找已完成的结果（只看 sidecar 是否存在），返回 (kind, metadata)"""
        for kind in KINDS:
            sidecar_path = os.path.join(self.kind_dir(kind), f"{node_id}.json")
            if os.path.isfile(sidecar_path):
                with open(sidecar_path, "r", encoding="utf-8") as f:
                    return kind, AssetMetadata(**json.load(f))
        return None

    def save_data_uri(self, value):
        """内联 data URI 落盘并替换为 /library URL；其他值原样返回"""
        if not isinstance(value, str) or not value.startswith("data:"):
            return value
        match = DATA_URI_PATTERN.match(value.strip())
        if not match:
            return value
        target = DATA_URI_TARGETS.get(match.group("mime").lower())
        if not target:
            return value
        kind, ext = target
        try:
            _, raw = split_data_uri(value)
        except ValueError as e:
            logger.warning(f"Workflow sanitize: keeping undecodable data URI ({e})")
            return value
        prefix = "wf_img" if kind == "images" else "wf_vid"
        url = self.persist(raw, kind, f"{prefix}_{uuid.uuid4().hex[:12]}", ext)
        logger.info(f"Workflow sanitize: saved {url} ({len(raw) / 1024:.1f} KB)")
        return url
