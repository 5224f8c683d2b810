# backend/core/dispatcher.py
import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from providers.adapters.base import BaseAdapter, ProviderRequest
from providers.adapters.factory import AdapterFactory, Provider, select_provider
from ..config import provider_credentials
from ..models.asset import Asset
from ..models.schemas import AssetMetadata, GenerateImageRequest, GenerateVideoRequest
from .media_library import MediaLibrary, inspect_image

logger = logging.getLogger(__name__)

# sidecar 中记录的默认模型名（请求未指定模型时）
DEFAULT_IMAGE_MODEL_LABEL = "gemini-pro"
DEFAULT_VIDEO_MODEL_LABEL = "veo-3.1"


class GenerationDispatcher:
    """
    服务端生成调度：选择供应商 -> 校验凭证 -> 解析图像引用 -> 线程池中调用适配器
    -> 按节点 ID 落盘（文件 + sidecar + Asset 记录）。
    """

    def __init__(self, library: MediaLibrary, credentials: Optional[Dict[str, dict]] = None):
        self.library = library
        # 为空时每次调用从 config 读取
        self._credentials = credentials

    def get_adapter(self, provider: Provider) -> BaseAdapter:
        credentials = self._credentials if self._credentials is not None else provider_credentials()
        adapter = AdapterFactory.get_adapter(provider, **credentials.get(provider.value, {}))
        # 凭证缺失在任何网络请求之前报错
        adapter.check_credentials()
        return adapter

    def _resolve_images(self, refs: List[str]) -> List[str]:
        resolved = [self.library.resolve_to_base64(ref) for ref in refs]
        return [image for image in resolved if image]

    async def generate_image(self, req: GenerateImageRequest, db: Session) -> str:
        provider = select_provider(req.image_model)
        adapter = self.get_adapter(provider)
        self._clear_previous(db, "images", req.node_id)
        source_refs = req.image_refs()
        provider_request = ProviderRequest(
            kind="image",
            model=req.image_model,
            prompt=req.prompt,
            images=self._resolve_images(source_refs),
            aspect_ratio=req.aspect_ratio or "Auto",
            resolution=req.resolution or "Auto",
        )
        logger.info(f"Image generation: provider={provider.value}, model={req.image_model}, "
                    f"node={req.node_id}, images={len(provider_request.images)}")

        # 适配器是同步阻塞的，放入线程池
        image_bytes = await asyncio.to_thread(adapter.generate, provider_request)

        width, height, ext = inspect_image(image_bytes)
        asset_id = req.node_id or f"img_{uuid.uuid4().hex[:12]}"
        url = self.library.persist(image_bytes, "images", asset_id, ext)
        metadata = AssetMetadata(
            id=asset_id,
            filename=f"{asset_id}.{ext}",
            prompt=req.prompt,
            model=req.image_model or DEFAULT_IMAGE_MODEL_LABEL,
            createdAt=datetime.now(timezone.utc).isoformat(),
            type="images",
        )
        self.library.write_sidecar("images", metadata)
        self._upsert_asset(db, metadata, url, width=width, height=height, fmt=ext, source_urls=source_refs)
        logger.info(f"Image saved: {url} (model: {metadata.model})")
        return url

    async def generate_video(self, req: GenerateVideoRequest, db: Session) -> str:
        if req.motion_reference_url:
            raise ValueError("Motion reference video (motionReferenceUrl) is not supported")
        provider = select_provider(req.video_model)
        adapter = self.get_adapter(provider)
        self._clear_previous(db, "videos", req.node_id)
        image_refs = req.image_refs()
        start_ref = image_refs[0] if image_refs else None
        source_refs = [ref for ref in (start_ref, req.last_frame_base64) if ref]

        start_frame = self.library.resolve_to_base64(start_ref)
        provider_request = ProviderRequest(
            kind="video",
            model=req.video_model,
            prompt=req.prompt,
            images=[start_frame] if start_frame else [],
            last_frame=self.library.resolve_to_base64(req.last_frame_base64),
            aspect_ratio=req.aspect_ratio or "Auto",
            resolution=req.resolution or "Auto",
            duration=req.duration,
        )
        logger.info(f"Video generation: provider={provider.value}, model={req.video_model}, "
                    f"node={req.node_id}, start_frame={bool(start_frame)}, "
                    f"last_frame={bool(provider_request.last_frame)}")

        video_bytes = await asyncio.to_thread(adapter.generate, provider_request)

        asset_id = req.node_id or f"vid_{uuid.uuid4().hex[:12]}"
        url = self.library.persist(video_bytes, "videos", asset_id, "mp4")
        metadata = AssetMetadata(
            id=asset_id,
            filename=f"{asset_id}.mp4",
            prompt=req.prompt,
            model=req.video_model or DEFAULT_VIDEO_MODEL_LABEL,
            createdAt=datetime.now(timezone.utc).isoformat(),
            type="videos",
            aspectRatio=req.aspect_ratio or "Auto",
            resolution=req.resolution or "Auto",
        )
        self.library.write_sidecar("videos", metadata)
        self._upsert_asset(db, metadata, url, fmt="mp4", source_urls=source_refs)
        logger.info(f"Video saved: {url} (model: {metadata.model})")
        return url

    def _clear_previous(self, db: Session, kind: str, node_id: Optional[str]):
        """同一节点重新生成：先撤掉旧结果，避免恢复轮询把进行中的任务当成已完成"""
        if not node_id:
            return
        if self.library.clear_sidecar(kind, node_id):
            logger.info(f"Cleared previous {kind} result for node {node_id}")
        asset = db.query(Asset).filter(Asset.id == node_id).first()
        if asset is not None:
            db.delete(asset)
            db.commit()

    def _upsert_asset(self, db: Session, metadata: AssetMetadata, url: str, width: int = None,
                      height: int = None, fmt: str = None, source_urls: List[str] = None):
        """同一节点重新生成时覆盖原记录"""
        # 内联 data URI 不记入血缘
        lineage = [ref for ref in (source_urls or []) if ref and not ref.startswith("data:")]
        asset = db.query(Asset).filter(Asset.id == metadata.id).first()
        if asset is None:
            asset = Asset(id=metadata.id)
            db.add(asset)
        asset.type = metadata.type
        asset.filename = metadata.filename
        asset.url = url
        asset.file_path = self.library.file_path_for(metadata.type, metadata.filename)
        asset.prompt = metadata.prompt
        asset.model = metadata.model
        asset.width = width
        asset.height = height
        asset.format = fmt
        asset.source_urls = lineage
        asset.created_at = datetime.utcnow()
        db.commit()
