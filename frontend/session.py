# frontend/session.py
import asyncio
import logging
from typing import List, Optional

from providers.utils import split_data_uri
from .api_client import BackendClient
from .frame_extraction import VideoFrameExtractor, image_aspect_ratio
from .generation import GenerationController
from .graph import CanvasGraph, NodeStatus, NodeType
from .recovery import RECOVERY_INTERVAL, GenerationRecovery
from .workflow import AUTO_SAVE_INTERVAL, AutoSaver, WorkflowTracker

logger = logging.getLogger(__name__)


class CanvasSession:
    """一个画布编辑会话：图、生成调度、恢复轮询、抽帧、自动保存共享同一个 graph"""

    def __init__(self, client: Optional[BackendClient] = None, recovery_interval: float = RECOVERY_INTERVAL,
                 auto_save_interval: float = AUTO_SAVE_INTERVAL):
        self.client = client or BackendClient()
        self.graph = CanvasGraph()
        self.controller = GenerationController(self.graph, self.client)
        self.recovery = GenerationRecovery(self.graph, self.client, interval=recovery_interval)
        self.extractor = VideoFrameExtractor(self.graph, self.client)
        self.tracker = WorkflowTracker(self.graph, self.client)
        self.auto_saver = AutoSaver(self.tracker, interval=auto_save_interval)
        self._stop_event: Optional[asyncio.Event] = None
        self._tasks: List[asyncio.Task] = []

    async def generate(self, node_id: str) -> bool:
        dispatched = await self.controller.generate(node_id)
        if dispatched:
            self.extractor.forget(node_id)
            await self.refresh_derived()
        return dispatched

    async def refresh_derived(self):
        """结果变化后的补充信息：视频最后一帧、图片实际宽高比"""
        self.extractor.prune(self.graph)
        await self.extractor.extract_pending()
        await self.probe_image_aspect_ratios()

    async def probe_image_aspect_ratios(self):
        for node in self.graph:
            if node.type == NodeType.VIDEO or node.status != NodeStatus.SUCCESS:
                continue
            if not node.result_url or node.result_aspect_ratio:
                continue
            url = node.result_url
            try:
                raw = await asyncio.to_thread(self._fetch_image, url)
                ratio = image_aspect_ratio(raw)
            except Exception as e:
                logger.warning(f"Failed to read result size for node {node.id}: {e}")
                continue
            current = self.graph.get(node.id)
            if current is not None and current.result_url == url:
                self.graph.record_result_aspect_ratio(node.id, ratio)

    def _fetch_image(self, url: str) -> bytes:
        if url.startswith("data:"):
            return split_data_uri(url)[1]
        return self.client.fetch_bytes(url)

    async def recover(self) -> List[str]:
        recovered = await self.recovery.check_once()
        if recovered:
            await self.refresh_derived()
        return recovered

    async def load(self, workflow_id: str):
        data = await self.tracker.load(workflow_id)
        self.extractor.prune(self.graph)
        return data

    def new_canvas(self):
        self.tracker.new_canvas()
        self.extractor.prune(self.graph)

    # ---------- 后台任务 ----------
    def start(self):
        """在当前事件循环中启动恢复轮询和自动保存"""
        if self._tasks:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self.recovery.run(self._stop_event, on_recovered=self.refresh_derived)),
            asyncio.create_task(self.auto_saver.run(self._stop_event)),
        ]

    async def stop(self):
        if not self._tasks:
            return
        self._stop_event.set()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
