# backend/models/schemas.py
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, validator


# ---------- 生成请求 ----------
class GenerationRequestBase(BaseModel):
    node_id: Optional[str] = Field(None, alias="nodeId")
    prompt: str = ""
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio")
    resolution: Optional[str] = None
    duration: Optional[int] = None
    image_base64: Optional[Union[str, List[str]]] = Field(None, alias="imageBase64")

    class Config:
        populate_by_name = True

    @validator('node_id')
    def node_id_is_plain(cls, v):
        # node id 直接用作文件名，禁止路径分隔符
        if v is not None and (not v.strip() or "/" in v or "\\" in v or v.startswith(".")):
            raise ValueError('invalid nodeId')
        return v

    def image_refs(self) -> List[str]:
        if not self.image_base64:
            return []
        if isinstance(self.image_base64, str):
            return [self.image_base64]
        return [ref for ref in self.image_base64 if ref]


class GenerateImageRequest(GenerationRequestBase):
    image_model: Optional[str] = Field(None, alias="imageModel")


class GenerateVideoRequest(GenerationRequestBase):
    video_model: Optional[str] = Field(None, alias="videoModel")
    last_frame_base64: Optional[str] = Field(None, alias="lastFrameBase64")
    # 动作参考视频（motion control）暂不支持，接受但忽略
    motion_reference_url: Optional[str] = Field(None, alias="motionReferenceUrl")


class GenerationResult(BaseModel):
    result_url: str = Field(..., alias="resultUrl")

    class Config:
        populate_by_name = True


class GenerationStatus(BaseModel):
    status: str  # success / pending
    result_url: Optional[str] = Field(None, alias="resultUrl")
    type: Optional[str] = None  # image / video

    class Config:
        populate_by_name = True


# ---------- 元数据 sidecar（与结果文件同名 .json） ----------
class AssetMetadata(BaseModel):
    id: str
    filename: str
    prompt: str = ""
    model: str = ""
    created_at: str = Field(..., alias="createdAt")
    type: str  # images / videos
    aspect_ratio: Optional[str] = Field(None, alias="aspectRatio")
    resolution: Optional[str] = None

    class Config:
        populate_by_name = True


# ---------- Workflow ----------
class WorkflowSave(BaseModel):
    id: Optional[str] = None
    title: str = "Untitled Canvas"
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    groups: List[Dict[str, Any]] = Field(default_factory=list)
    cover_url: Optional[str] = Field(None, alias="coverUrl")

    class Config:
        populate_by_name = True

    @validator('title')
    def title_not_empty(cls, v):
        return v.strip() or "Untitled Canvas"


class WorkflowSummary(BaseModel):
    id: str
    title: str
    cover_url: Optional[str] = Field(None, alias="coverUrl")
    node_count: int = Field(0, alias="nodeCount")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    class Config:
        populate_by_name = True


class WorkflowOut(BaseModel):
    id: str
    title: str
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    groups: List[Dict[str, Any]] = Field(default_factory=list)
    cover_url: Optional[str] = Field(None, alias="coverUrl")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    class Config:
        populate_by_name = True
        from_attributes = True
