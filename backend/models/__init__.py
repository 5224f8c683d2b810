# backend/models/__init__.py
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# 导入所有模型，确保它们注册到 Base
from .asset import Asset
from .workflow import Workflow
