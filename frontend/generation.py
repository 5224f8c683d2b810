# frontend/generation.py
import asyncio
import logging
import re
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel

from .api_client import BackendClient
from .graph import CanvasGraph, Node, NodeStatus, NodeType

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "Permission denied. Check API Key configuration."
# 状态码只匹配独立的 403，避免命中请求 ID 等
PERMISSION_PATTERNS = [
    re.compile(r"\bpermission[_ ]denied\b", re.IGNORECASE),
    re.compile(r"\b(?:do not|don't|does not) have permission\b", re.IGNORECASE),
    re.compile(r"\bentity was not found\b", re.IGNORECASE),
    re.compile(r"(?<![\w-])403(?![\w-])"),
]
DEFAULT_ERROR_MESSAGE = "Generation failed"

IMAGE_NODE_TYPES = (NodeType.IMAGE, NodeType.IMAGE_EDITOR)


def classify_error(error: Any) -> str:
    """把原始异常归一为节点上显示的错误信息"""
    raw = str(error) if error is not None else ""
    if any(pattern.search(raw) for pattern in PERMISSION_PATTERNS):
        return PERMISSION_DENIED_MESSAGE
    return raw or DEFAULT_ERROR_MESSAGE


class GenerationOutcome(BaseModel):
    status: NodeStatus
    result_url: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def success(cls, result_url: str) -> "GenerationOutcome":
        return cls(status=NodeStatus.SUCCESS, result_url=result_url)

    @classmethod
    def failure(cls, error: Any) -> "GenerationOutcome":
        return cls(status=NodeStatus.ERROR, error_message=classify_error(error))


def apply_generation_outcome(graph: CanvasGraph, node_id: str, outcome: GenerationOutcome) -> bool:
    """
    Loading 节点的唯一终态转换函数。直接响应和恢复轮询都走这里。
    节点不存在或已不在 Loading 时不做任何修改，返回 False。
    """
    node = graph.get(node_id)
    if node is None:
        logger.info(f"Generation finished for removed node {node_id}, ignored")
        return False
    if node.status != NodeStatus.LOADING:
        return False
    if outcome.status == NodeStatus.SUCCESS and outcome.result_url:
        graph.set_generation_state(node_id, NodeStatus.SUCCESS, result_url=outcome.result_url)
    else:
        graph.set_generation_state(node_id, NodeStatus.ERROR,
                                   error_message=outcome.error_message or DEFAULT_ERROR_MESSAGE)
    return True


class GenerationController:
    """客户端生成调度：状态闸门 + 上游输入解析 + 调用后端"""

    def __init__(self, graph: CanvasGraph, client: BackendClient):
        self.graph = graph
        self.client = client

    def build_request(self, node: Node) -> Optional[Tuple[str, Dict[str, Any]]]:
        """返回 (kind, payload)；不支持生成的节点类型返回 None"""
        payload = {
            "nodeId": node.id,
            "prompt": node.prompt,
            "aspectRatio": node.aspect_ratio,
            "resolution": node.resolution,
        }
        if node.type in IMAGE_NODE_TYPES:
            images = self.graph.resolve_upstream_images(node.id, self.graph.max_images_for(node.id))
            payload["imageModel"] = node.model or None
            if images:
                payload["imageBase64"] = images
            return "image", payload

        if node.type == NodeType.VIDEO:
            payload["videoModel"] = node.model or None
            if node.duration:
                payload["duration"] = node.duration
            start_frame = self.graph.resolve_video_input(node.id)
            if start_frame:
                payload["imageBase64"] = start_frame
            # 第二个上游结果作为尾帧（首尾帧插值）
            if len(node.parent_ids) > 1:
                tail = self.graph.get(node.parent_ids[1])
                if tail is not None and tail.result_url and tail.type != NodeType.VIDEO:
                    payload["lastFrameBase64"] = tail.result_url
            return "video", payload

        return None

    async def generate(self, node_id: str) -> bool:
        """
        发起一次生成。返回是否真正发出了请求。
        Loading 状态在第一个 await 之前同步写入，重复调用直接返回。
        """
        node = self.graph.get(node_id)
        if node is None or not node.prompt or node.status == NodeStatus.LOADING:
            return False
        built = self.build_request(node)
        if built is None:
            return False
        kind, payload = built

        self.graph.set_generation_state(node_id, NodeStatus.LOADING)
        try:
            if kind == "image":
                result_url = await asyncio.to_thread(self.client.generate_image, payload)
            else:
                result_url = await asyncio.to_thread(self.client.generate_video, payload)
            outcome = GenerationOutcome.success(result_url)
        except Exception as e:
            logger.error(f"Generation failed for node {node_id}: {e}")
            outcome = GenerationOutcome.failure(e)

        apply_generation_outcome(self.graph, node_id, outcome)
        return True
