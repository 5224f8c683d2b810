# frontend/graph.py
import logging
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from providers.adapters.factory import Provider, select_provider

logger = logging.getLogger(__name__)

NODE_WIDTH = 340
NODE_GAP = 100

# 每个供应商单次请求可接受的参考图数量上限
MAX_IMAGES_BY_PROVIDER = {
    Provider.GEMINI: 14,
    Provider.KLING: 4,
    Provider.OPENAI: 16,
    Provider.HAILUO: 1,
}


class NodeType(str, Enum):
    TEXT = "Text"
    IMAGE = "Image"
    VIDEO = "Video"
    AUDIO = "Audio"
    IMAGE_EDITOR = "Image Editor"
    STORYBOARD = "Storyboard Manager"


class NodeStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


DEFAULT_MODELS = {
    NodeType.IMAGE: "gemini-3-pro-image-preview",
    NodeType.IMAGE_EDITOR: "gemini-3-pro-image-preview",
    NodeType.VIDEO: "veo-3.1-fast",
}

# 只能通过 set_generation_state / connect / record_result_aspect_ratio 修改的字段
PROTECTED_FIELDS = {
    "id", "type", "status", "result_url", "error_message",
    "parent_id", "parent_ids", "result_aspect_ratio",
}


class GraphError(ValueError):
    pass


class Node(BaseModel):
    id: str
    type: NodeType
    x: float = 0
    y: float = 0
    prompt: str = ""
    status: NodeStatus = NodeStatus.IDLE
    result_url: Optional[str] = Field(None, alias="resultUrl")
    result_aspect_ratio: Optional[str] = Field(None, alias="resultAspectRatio")
    last_frame: Optional[str] = Field(None, alias="lastFrame")
    parent_id: Optional[str] = Field(None, alias="parentId")
    parent_ids: List[str] = Field(default_factory=list, alias="parentIds")
    error_message: Optional[str] = Field(None, alias="errorMessage")

    # 生成设置
    model: str = ""
    aspect_ratio: str = Field("Auto", alias="aspectRatio")
    resolution: str = "Auto"
    duration: Optional[int] = None

    class Config:
        populate_by_name = True
        validate_assignment = True

    def sync_parents(self):
        """parentIds 为准，parentId 镜像 parentIds[0]；旧数据只有 parentId 时补齐 parentIds"""
        if not self.parent_ids and self.parent_id:
            self.parent_ids = [self.parent_id]
        self.parent_id = self.parent_ids[0] if self.parent_ids else None

    def set_parents(self, parent_ids: List[str]):
        self.parent_ids = list(parent_ids)
        self.parent_id = self.parent_ids[0] if self.parent_ids else None


class NodeGroup(BaseModel):
    id: str
    title: str = "Group"
    node_ids: List[str] = Field(default_factory=list, alias="nodeIds")

    class Config:
        populate_by_name = True


def _field_name(key: str) -> str:
    """camelCase 别名 -> 字段名"""
    for name, field in Node.model_fields.items():
        if key == name or key == field.alias:
            return name
    raise GraphError(f"Unknown node field: {key}")


class CanvasGraph:
    """画布上的节点 DAG。所有修改都是同步的。"""

    def __init__(self, nodes: Optional[List[Node]] = None, groups: Optional[List[NodeGroup]] = None):
        self.nodes: Dict[str, Node] = {}
        for node in nodes or []:
            node.sync_parents()
            self.nodes[node.id] = node
        self.groups: List[NodeGroup] = list(groups or [])

    def get(self, node_id: str) -> Optional[Node]:
        return self.nodes.get(node_id)

    def require(self, node_id: str) -> Node:
        node = self.nodes.get(node_id)
        if node is None:
            raise GraphError(f"Node not found: {node_id}")
        return node

    def __len__(self):
        return len(self.nodes)

    def __iter__(self):
        return iter(list(self.nodes.values()))

    # ---------- 节点增删改 ----------
    def add_node(self, node_type: NodeType, position: Tuple[float, float],
                 parent_id: Optional[str] = None, **settings) -> Node:
        node_type = NodeType(node_type)
        if parent_id is not None:
            self.require(parent_id)
        x, y = position
        node = Node(
            id=str(uuid.uuid4()),
            type=node_type,
            x=x,
            y=y,
            model=DEFAULT_MODELS.get(node_type, ""),
        )
        for key, value in settings.items():
            name = _field_name(key)
            if name in PROTECTED_FIELDS:
                raise GraphError(f"Field '{key}' cannot be set on creation")
            setattr(node, name, value)
        self.nodes[node.id] = node
        if parent_id is not None:
            self._link(parent_id, node)
        return node

    def update_node(self, node_id: str, **fields) -> Node:
        """合并字段。生成状态、结果、连线不能从这里改。"""
        node = self.require(node_id)
        updates = {}
        for key, value in fields.items():
            name = _field_name(key)
            if name in PROTECTED_FIELDS:
                raise GraphError(f"Field '{key}' cannot be changed through update_node")
            updates[name] = value
        for name, value in updates.items():
            setattr(node, name, value)
        return node

    def delete_node(self, node_id: str):
        """删除节点；子节点只断开连线，不级联删除；同时清理分组"""
        if self.nodes.pop(node_id, None) is None:
            return
        for node in self.nodes.values():
            if node_id in node.parent_ids:
                node.set_parents([pid for pid in node.parent_ids if pid != node_id])

        kept_groups = []
        for group in self.groups:
            group.node_ids = [nid for nid in group.node_ids if nid != node_id]
            if len(group.node_ids) >= 2:
                kept_groups.append(group)
        self.groups = kept_groups

    def set_generation_state(self, node_id: str, status: NodeStatus, result_url: Optional[str] = None,
                             error_message: Optional[str] = None) -> Node:
        """生成状态转换的唯一写入口，只由 apply_generation_outcome / GenerationController 调用"""
        node = self.require(node_id)
        status = NodeStatus(status)
        if status == NodeStatus.SUCCESS:
            if not result_url:
                raise GraphError("Success state requires a result url")
            if node.result_url != result_url:
                node.result_aspect_ratio = None
                node.last_frame = None
            node.result_url = result_url
            node.error_message = None
        else:
            # loading / error / idle：没有结果
            node.result_url = None
            node.result_aspect_ratio = None
            node.last_frame = None
            node.error_message = error_message if status == NodeStatus.ERROR else None
        node.status = status
        return node

    def record_result_aspect_ratio(self, node_id: str, ratio: str) -> bool:
        """每个 resultUrl 只记录一次实际宽高比"""
        node = self.require(node_id)
        if not node.result_url or node.result_aspect_ratio:
            return False
        node.result_aspect_ratio = ratio
        return True

    # ---------- 连线 ----------
    def _is_ancestor(self, ancestor_id: str, node_id: str) -> bool:
        stack = [node_id]
        visited = set()
        while stack:
            current = stack.pop()
            if current == ancestor_id:
                return True
            if current in visited:
                continue
            visited.add(current)
            node = self.nodes.get(current)
            if node is not None:
                stack.extend(node.parent_ids)
        return False

    def _link(self, parent_id: str, child: Node):
        parent = self.nodes[parent_id]
        child.set_parents(child.parent_ids + [parent_id])
        # Text 节点的提示词在新建连线时复制一次，之后互不影响
        if parent.type == NodeType.TEXT and parent.prompt:
            child.prompt = parent.prompt

    def connect(self, parent_id: str, child_id: str) -> bool:
        """新增连线 parent -> child；已存在返回 False，成环抛 GraphError"""
        if parent_id == child_id:
            raise GraphError("A node cannot be connected to itself")
        self.require(parent_id)
        child = self.require(child_id)
        if parent_id in child.parent_ids:
            return False
        if self._is_ancestor(child_id, parent_id):
            raise GraphError(f"Connecting {parent_id} -> {child_id} would create a cycle")
        self._link(parent_id, child)
        return True

    def disconnect(self, parent_id: str, child_id: str) -> bool:
        child = self.require(child_id)
        if parent_id not in child.parent_ids:
            return False
        child.set_parents([pid for pid in child.parent_ids if pid != parent_id])
        return True

    def insert_before(self, node_id: str, node_type: NodeType) -> Node:
        """
        在目标节点前插入新节点：新节点接管目标的全部上游连线，
        目标节点只以新节点为上游。
        """
        target = self.require(node_id)
        inherited = list(target.parent_ids)
        node = self.add_node(node_type, (target.x - NODE_WIDTH - NODE_GAP, target.y))
        for parent_id in inherited:
            if parent_id in self.nodes:
                self._link(parent_id, node)
        target.set_parents([node.id])
        return node

    def append_after(self, node_id: str, node_type: NodeType) -> Node:
        source = self.require(node_id)
        return self.add_node(node_type, (source.x + NODE_WIDTH + NODE_GAP, source.y), parent_id=source.id)

    # ---------- 分组 ----------
    def add_group(self, title: str, node_ids: List[str]) -> NodeGroup:
        members = [nid for nid in dict.fromkeys(node_ids) if nid in self.nodes]
        if len(members) < 2:
            raise GraphError("A group needs at least two nodes")
        group = NodeGroup(id=str(uuid.uuid4()), title=title, nodeIds=members)
        self.groups.append(group)
        return group

    # ---------- 上游输入解析（永不抛异常） ----------
    def resolve_upstream_images(self, node_id: str, max_images: int) -> List[str]:
        """
        对 parentIds 中的每条链向上查找第一个有结果的节点（跳过中间的 Text 等无结果节点），
        按 parentIds 顺序最多返回 max_images 个引用。
        """
        node = self.nodes.get(node_id)
        if node is None or max_images <= 0:
            return []
        images = []
        for parent_id in node.parent_ids:
            if len(images) >= max_images:
                break
            current = parent_id
            visited = set()
            while current and current not in visited:
                visited.add(current)
                parent = self.nodes.get(current)
                if parent is None:
                    break
                if parent.result_url:
                    images.append(parent.result_url)
                    break
                current = parent.parent_ids[0] if parent.parent_ids else None
        return images

    def resolve_video_input(self, node_id: str) -> Optional[str]:
        """视频链优先使用上游视频的最后一帧，否则使用上游结果"""
        node = self.nodes.get(node_id)
        if node is None or not node.parent_ids:
            return None
        parent = self.nodes.get(node.parent_ids[0])
        if parent is None:
            return None
        if parent.type == NodeType.VIDEO and parent.last_frame:
            return parent.last_frame
        return parent.result_url

    def max_images_for(self, node_id: str) -> int:
        node = self.require(node_id)
        return MAX_IMAGES_BY_PROVIDER[select_provider(node.model)]

    def loading_node_ids(self) -> List[str]:
        return [node.id for node in self.nodes.values() if node.status == NodeStatus.LOADING]

    # ---------- 序列化 ----------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "nodes": [node.model_dump(by_alias=True, mode="json", exclude_none=True) for node in self.nodes.values()],
            "groups": [group.model_dump(by_alias=True, mode="json") for group in self.groups],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanvasGraph":
        nodes = [Node(**raw) for raw in data.get("nodes") or []]
        groups = [NodeGroup(**raw) for raw in data.get("groups") or []]
        graph = cls(nodes, groups)
        # 丢弃引用了不存在节点的分组成员
        for group in graph.groups:
            group.node_ids = [nid for nid in group.node_ids if nid in graph.nodes]
        graph.groups = [g for g in graph.groups if len(g.node_ids) >= 2]
        return graph
