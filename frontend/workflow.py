# frontend/workflow.py
import asyncio
import logging
from typing import Any, Dict, List, Optional

from .api_client import BackendClient
from .graph import CanvasGraph

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled Canvas"
AUTO_SAVE_INTERVAL = 60


class WorkflowTracker:
    """
    当前画布对应的 workflow 记录与未保存状态。
    节点数量或标题相对上次观察值变化即标记为脏，保存/加载成功后清除。
    """

    def __init__(self, graph: CanvasGraph, client: BackendClient):
        self.graph = graph
        self.client = client
        self.workflow_id: Optional[str] = None
        self.title = DEFAULT_TITLE
        self.cover_url: Optional[str] = None
        self._dirty = False
        self._observed = (len(graph), self.title)

    def _state(self):
        return len(self.graph), self.title

    def observe(self) -> bool:
        state = self._state()
        if state != self._observed:
            self._dirty = True
            self._observed = state
        return self._dirty

    @property
    def is_dirty(self) -> bool:
        return self.observe()

    @property
    def has_unsaved_changes(self) -> bool:
        return self.is_dirty and len(self.graph) > 0

    def _mark_clean(self):
        self._dirty = False
        self._observed = self._state()

    def set_title(self, title: str):
        self.title = title.strip() or DEFAULT_TITLE

    def build_payload(self, cover_url: Optional[str] = None) -> Dict[str, Any]:
        payload = {"title": self.title, **self.graph.to_dict()}
        if self.workflow_id:
            payload["id"] = self.workflow_id
        # 不传 coverUrl 时服务端保留原封面
        if cover_url is not None:
            payload["coverUrl"] = cover_url
        return payload

    async def save(self, cover_url: Optional[str] = None) -> Dict[str, Any]:
        self.observe()
        payload = self.build_payload(cover_url)
        sent_state = self._state()
        saved = await asyncio.to_thread(self.client.save_workflow, payload)

        self.workflow_id = saved.get("id") or self.workflow_id
        self.cover_url = saved.get("coverUrl", self.cover_url)
        self._adopt_library_frames(payload["nodes"], saved.get("nodes") or [])
        # 保存期间又有修改时保持脏状态
        if self._state() == sent_state:
            self._mark_clean()
        logger.info(f"Workflow saved: {self.workflow_id} ({len(payload['nodes'])} nodes)")
        return saved

    def _adopt_library_frames(self, sent: List[Dict[str, Any]], stored: List[Dict[str, Any]]):
        """服务端把内联 lastFrame 写入了媒体库，本地也换成库 URL，避免下次重复上传"""
        stored_by_id = {node.get("id"): node for node in stored}
        for raw in sent:
            sent_frame = raw.get("lastFrame")
            stored_frame = (stored_by_id.get(raw.get("id")) or {}).get("lastFrame")
            if not sent_frame or not stored_frame or sent_frame == stored_frame:
                continue
            node = self.graph.get(raw["id"])
            if node is not None and node.last_frame == sent_frame:
                self.graph.update_node(node.id, last_frame=stored_frame)

    async def load(self, workflow_id: str) -> Dict[str, Any]:
        data = await asyncio.to_thread(self.client.load_workflow, workflow_id)
        loaded = CanvasGraph.from_dict(data)
        # 原地替换，持有 graph 引用的组件（生成、恢复、抽帧）继续有效
        self.graph.nodes = loaded.nodes
        self.graph.groups = loaded.groups
        self.workflow_id = data.get("id", workflow_id)
        self.title = data.get("title") or DEFAULT_TITLE
        self.cover_url = data.get("coverUrl")
        self._mark_clean()
        logger.info(f"Workflow loaded: {self.workflow_id} ({len(self.graph)} nodes)")
        return data

    def new_canvas(self):
        """清空画布并断开与已保存记录的关联，下次保存会创建新记录"""
        self.graph.nodes = {}
        self.graph.groups = []
        self.title = DEFAULT_TITLE
        self.workflow_id = None
        self.cover_url = None
        self._mark_clean()


class AutoSaver:
    """定时自动保存：有未保存修改、至少一个节点、且没有正在进行的保存时才触发"""

    def __init__(self, tracker: WorkflowTracker, interval: float = AUTO_SAVE_INTERVAL):
        self.tracker = tracker
        self.interval = interval
        self.saving = False

    async def tick(self) -> bool:
        """执行一次检查，返回是否保存成功"""
        if self.saving or not self.tracker.has_unsaved_changes:
            return False
        self.saving = True
        try:
            logger.info("[Auto-Save] Triggering periodic save...")
            await self.tracker.save()
            return True
        except Exception as e:
            # 失败不清除脏状态，下个周期重试
            logger.error(f"[Auto-Save] Failed to auto-save: {e}")
            return False
        finally:
            self.saving = False

    async def run(self, stop_event: asyncio.Event = None):
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                await self.tick()
