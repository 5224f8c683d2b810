# backend/app.py
import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse

from .api import generation, workflows
from .api.generation import get_library
from .config import CORS_ORIGINS, LIBRARY_DIR, LOG_LEVEL
from .core.media_library import MediaLibrary
from .db import init_db

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # 启动时初始化数据库
    init_db()
    logger.info(f"数据库初始化完成，媒体库目录: {LIBRARY_DIR}")
    yield
    logger.info("应用关闭")


app = FastAPI(title="FrameChain API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(generation.router)
app.include_router(workflows.router)


@app.get("/library/{file_path:path}")
async def get_library_file(file_path: str, library: MediaLibrary = Depends(get_library)):
    # 安全限制：只允许访问媒体库目录
    full_path = library.safe_path(file_path)
    if not full_path:
        raise HTTPException(status_code=400, detail="Invalid path")
    if not os.path.isfile(full_path):
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(full_path)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
