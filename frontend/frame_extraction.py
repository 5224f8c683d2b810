# frontend/frame_extraction.py
import asyncio
import io
import logging
import os
import tempfile
from typing import List, Optional, Set, Tuple

import cv2
from PIL import Image

from providers.utils import DATA_URI_PATTERN, split_data_uri, to_data_uri
from .api_client import BackendClient
from .graph import CanvasGraph, Node, NodeStatus, NodeType

logger = logging.getLogger(__name__)

JPEG_QUALITY = 90
SUFFIX_BY_MIME = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
}


def decode_last_frame(video_bytes: bytes, suffix: str = ".mp4") -> Tuple[str, int, int]:
    """
    解码视频最后一帧，返回 (JPEG data URI, width, height)。
    先按帧数直接定位，定位失败时顺序读到最后一帧。
    """
    with tempfile.NamedTemporaryFile(delete=False, suffix=suffix) as tmp:
        tmp.write(video_bytes)
        tmp_path = tmp.name
    try:
        frame = None
        cap = cv2.VideoCapture(tmp_path)
        try:
            frame_count = int(cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
            if frame_count > 0:
                cap.set(cv2.CAP_PROP_POS_FRAMES, frame_count - 1)
                ok, seeked = cap.read()
                if ok:
                    frame = seeked
        finally:
            cap.release()

        if frame is None:
            cap = cv2.VideoCapture(tmp_path)
            try:
                while cap.isOpened():
                    ok, current = cap.read()
                    if not ok:
                        break
                    frame = current
            finally:
                cap.release()
    finally:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)

    if frame is None:
        raise ValueError("No decodable frames in video")
    height, width = frame.shape[:2]
    ok, encoded = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, JPEG_QUALITY])
    if not ok:
        raise ValueError("Failed to encode last frame")
    return to_data_uri(encoded.tobytes(), "image/jpeg"), width, height


def image_aspect_ratio(image_bytes: bytes) -> str:
    width, height = Image.open(io.BytesIO(image_bytes)).size
    return f"{width}/{height}"


class VideoFrameExtractor:
    """
    为成功的视频节点补齐 lastFrame（用于视频续接）。
    每个 (节点, 结果 URL) 最多尝试一次，失败不重试，也不影响节点状态；
    重新生成得到新 URL 后会再次抽帧。已尝试集合由会话持有。
    """

    def __init__(self, graph: CanvasGraph, client: BackendClient):
        self.graph = graph
        self.client = client
        self.attempted: Set[Tuple[str, str]] = set()

    def candidates(self) -> List[Node]:
        return [
            node for node in self.graph
            if node.type == NodeType.VIDEO
            and node.status == NodeStatus.SUCCESS
            and node.result_url
            and not node.last_frame
            and (node.id, node.result_url) not in self.attempted
        ]

    def _load_video(self, url: str) -> Tuple[bytes, str]:
        if url.startswith("data:"):
            match = DATA_URI_PATTERN.match(url.strip())
            mime = match.group("mime") if match else "video/mp4"
            return split_data_uri(url, default_mime="video/mp4")[1], SUFFIX_BY_MIME.get(mime, ".mp4")
        ext = os.path.splitext(url.split("?", 1)[0])[1].lower()
        return self.client.fetch_bytes(url), ext or ".mp4"

    def _decode(self, url: str) -> Tuple[str, int, int]:
        video_bytes, suffix = self._load_video(url)
        return decode_last_frame(video_bytes, suffix)

    async def _extract(self, node_id: str, url: str) -> bool:
        try:
            frame_uri, width, height = await asyncio.to_thread(self._decode, url)
        except Exception as e:
            logger.warning(f"Failed to extract last frame for video node {node_id}: {e}")
            return False
        node = self.graph.get(node_id)
        # 解码期间节点被删除或结果已变化
        if node is None or node.result_url != url:
            return False
        self.graph.update_node(node_id, last_frame=frame_uri)
        self.graph.record_result_aspect_ratio(node_id, f"{width}/{height}")
        logger.info(f"Extracted last frame for video node {node_id}")
        return True

    async def extract_pending(self) -> List[str]:
        """处理当前所有候选节点，返回成功补齐 lastFrame 的节点 ID"""
        nodes = self.candidates()
        if not nodes:
            return []
        # 先登记再解码，避免并发重复尝试
        for node in nodes:
            self.attempted.add((node.id, node.result_url))
        results = await asyncio.gather(*(self._extract(node.id, node.result_url) for node in nodes))
        return [node.id for node, ok in zip(nodes, results) if ok]

    def forget(self, node_id: str):
        """节点重新生成后允许再次抽帧（结果 URL 可能与上次相同）"""
        self.attempted = {key for key in self.attempted if key[0] != node_id}

    def prune(self, graph: Optional[CanvasGraph] = None):
        """移除已不在画布上的节点"""
        graph = graph or self.graph
        self.attempted = {key for key in self.attempted if graph.get(key[0]) is not None}
