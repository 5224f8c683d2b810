# backend/models/asset.py
from sqlalchemy import Column, Integer, String, JSON, DateTime, Text, Index
from datetime import datetime
from . import Base


class Asset(Base):
    """媒体库中的一条生成结果，id 即发起生成的节点 ID（没有节点 ID 时为随机 ID）"""
    __tablename__ = 'assets'

    id = Column(String(100), primary_key=True)
    type = Column(String(20), nullable=False)  # images / videos
    filename = Column(String(200), nullable=False)
    url = Column(String(500), nullable=False)  # /library/images/xxx.png
    file_path = Column(String(500), nullable=False)

    prompt = Column(Text, default="")
    model = Column(String(100), default="")
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    format = Column(String(20), nullable=True)

    # 血缘关系：生成此结果所使用的上游图片引用
    source_urls = Column(JSON, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_asset_type', 'type'),
    )
