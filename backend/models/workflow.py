# backend/models/workflow.py
from sqlalchemy import Column, String, DateTime, JSON
from datetime import datetime
from . import Base


class Workflow(Base):
    __tablename__ = 'workflows'

    id = Column(String(64), primary_key=True)
    title = Column(String(200), nullable=False, default="Untitled Canvas")
    nodes = Column(JSON, default=list)  # 画布节点（camelCase JSON，与前端一致）
    groups = Column(JSON, default=list)
    cover_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
