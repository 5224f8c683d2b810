# frontend/recovery.py
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .api_client import BackendClient
from .generation import GenerationOutcome, apply_generation_outcome
from .graph import CanvasGraph

logger = logging.getLogger(__name__)

RECOVERY_INTERVAL = 10


class GenerationRecovery:
    """
    客户端重启后，仍处于 Loading 的节点可能已在服务端完成。
    周期性按节点 ID 查询生成状态，完成的节点通过统一的转换函数进入 Success。
    pending 不做处理（没有客户端超时）。
    """

    def __init__(self, graph: CanvasGraph, client: BackendClient, interval: float = RECOVERY_INTERVAL):
        self.graph = graph
        self.client = client
        self.interval = interval

    async def check_once(self) -> List[str]:
        """检查一轮，返回本轮恢复成功的节点 ID"""
        recovered = []
        # 每轮重新从 Loading 节点计算轮询集合
        for node_id in self.graph.loading_node_ids():
            try:
                status = await asyncio.to_thread(self.client.generation_status, node_id)
            except Exception as e:
                logger.warning(f"Generation status check failed for {node_id}: {e}")
                continue
            if isinstance(status, dict) and status.get("status") == "success" and status.get("resultUrl"):
                if apply_generation_outcome(self.graph, node_id, GenerationOutcome.success(status["resultUrl"])):
                    logger.info(f"Recovered generation result for node {node_id}: {status['resultUrl']}")
                    recovered.append(node_id)
        return recovered

    async def run(self, stop_event: asyncio.Event = None, on_recovered: Optional[Callable[[], Awaitable]] = None):
        """后台循环；没有 Loading 节点时空转"""
        stop_event = stop_event or asyncio.Event()
        while not stop_event.is_set():
            if self.graph.loading_node_ids():
                recovered = await self.check_once()
                if recovered and on_recovered is not None:
                    await on_recovered()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
