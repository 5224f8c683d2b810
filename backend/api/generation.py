# backend/api/generation.py
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..config import LIBRARY_DIR
from ..core.dispatcher import GenerationDispatcher
from ..core.media_library import MediaLibrary
from ..db import get_db
from ..models.schemas import GenerateImageRequest, GenerateVideoRequest, GenerationResult, GenerationStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["generation"])

_library = None
_dispatcher = None


def get_library() -> MediaLibrary:
    global _library
    if _library is None:
        _library = MediaLibrary(LIBRARY_DIR)
    return _library


def get_dispatcher(library: MediaLibrary = Depends(get_library)) -> GenerationDispatcher:
    global _dispatcher
    if _dispatcher is None or _dispatcher.library is not library:
        _dispatcher = GenerationDispatcher(library)
    return _dispatcher


@router.post("/generate-image", response_model=GenerationResult)
async def generate_image(req: GenerateImageRequest, db: Session = Depends(get_db),
                         dispatcher: GenerationDispatcher = Depends(get_dispatcher)):
    try:
        result_url = await dispatcher.generate_image(req, db)
    except Exception as e:
        logger.error(f"Image generation failed (node={req.node_id}): {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e) or "Image generation failed"})
    return GenerationResult(resultUrl=result_url)


@router.post("/generate-video", response_model=GenerationResult)
async def generate_video(req: GenerateVideoRequest, db: Session = Depends(get_db),
                         dispatcher: GenerationDispatcher = Depends(get_dispatcher)):
    try:
        result_url = await dispatcher.generate_video(req, db)
    except Exception as e:
        logger.error(f"Video generation failed (node={req.node_id}): {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e) or "Video generation failed"})
    return GenerationResult(resultUrl=result_url)


@router.get("/generation-status/{node_id}", response_model=GenerationStatus, response_model_exclude_none=True)
async def generation_status(node_id: str, library: MediaLibrary = Depends(get_library)):
    """按节点 ID 检查生成是否已完成（客户端重启后的恢复轮询）"""
    if "/" in node_id or "\\" in node_id or node_id.startswith("."):
        raise HTTPException(status_code=400, detail="Invalid node id")
    try:
        found = library.find_result(node_id)
    except Exception as e:
        logger.error(f"Status check failed for {node_id}: {e}")
        return JSONResponse(status_code=500, content={"error": str(e)})
    if not found:
        return GenerationStatus(status="pending")
    kind, metadata = found
    return GenerationStatus(
        status="success",
        resultUrl=f"/library/{kind}/{metadata.filename}",
        type="image" if kind == "images" else "video",
    )
