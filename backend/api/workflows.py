# backend/api/workflows.py
import logging
import uuid
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ..core.media_library import MediaLibrary
from ..db import get_db
from ..models.schemas import WorkflowOut, WorkflowSave, WorkflowSummary
from ..models.workflow import Workflow
from .generation import get_library

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/workflows", tags=["workflows"])

# 节点上可能内联 base64 数据的字段
INLINE_MEDIA_FIELDS = ("resultUrl", "lastFrame")


def sanitize_nodes(nodes: List[Dict[str, Any]], library: MediaLibrary) -> List[Dict[str, Any]]:
    """把节点中的 data URI 写入媒体库并替换为 /library URL，避免数据库存大块 base64"""
    sanitized = []
    for node in nodes:
        node = dict(node)
        for field in INLINE_MEDIA_FIELDS:
            if field in node:
                node[field] = library.save_data_uri(node[field])
        sanitized.append(node)
    return sanitized


def _to_out(workflow: Workflow) -> WorkflowOut:
    return WorkflowOut(
        id=workflow.id,
        title=workflow.title,
        nodes=workflow.nodes or [],
        groups=workflow.groups or [],
        coverUrl=workflow.cover_url,
        createdAt=workflow.created_at,
        updatedAt=workflow.updated_at,
    )


@router.post("", response_model=WorkflowOut)
def save_workflow(payload: WorkflowSave, db: Session = Depends(get_db),
                  library: MediaLibrary = Depends(get_library)):
    """首次保存创建（生成 wf_ ID），之后按 ID 原地更新"""
    nodes = sanitize_nodes(payload.nodes, library)
    workflow = None
    if payload.id:
        workflow = db.query(Workflow).filter(Workflow.id == payload.id).first()

    if workflow is None:
        workflow = Workflow(id=payload.id or f"wf_{uuid.uuid4().hex}")
        db.add(workflow)
        logger.info(f"Creating workflow {workflow.id}")

    workflow.title = payload.title
    workflow.nodes = nodes
    workflow.groups = payload.groups
    # 未显式提供封面时保留原封面
    if "cover_url" in payload.model_fields_set:
        workflow.cover_url = payload.cover_url
    db.commit()
    db.refresh(workflow)
    return _to_out(workflow)


@router.get("", response_model=List[WorkflowSummary])
def list_workflows(db: Session = Depends(get_db)):
    workflows = db.query(Workflow).order_by(Workflow.updated_at.desc()).all()
    return [
        WorkflowSummary(
            id=wf.id,
            title=wf.title,
            coverUrl=wf.cover_url,
            nodeCount=len(wf.nodes or []),
            createdAt=wf.created_at,
            updatedAt=wf.updated_at,
        )
        for wf in workflows
    ]


@router.get("/{workflow_id}", response_model=WorkflowOut)
def get_workflow(workflow_id: str, db: Session = Depends(get_db)):
    workflow = db.query(Workflow).filter(Workflow.id == workflow_id).first()
    if not workflow:
        raise HTTPException(404, "Workflow not found")
    return _to_out(workflow)


@router.delete("/{workflow_id}", status_code=204)
def delete_workflow(workflow_id: str, db: Session = Depends(get_db)):
    workflow = db.query(Workflow).filter(Workflow.id == workflow_id).first()
    if not workflow:
        raise HTTPException(404, "Workflow not found")
    db.delete(workflow)
    db.commit()
    return
