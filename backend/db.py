# backend/db.py
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# 导入 models 包（会执行 __init__.py，注册所有模型）
from . import models
from .config import DATA_DIR, DATABASE_URL

connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
engine = create_engine(DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    os.makedirs(DATA_DIR, exist_ok=True)
    # 使用 models.Base 创建所有表
    models.Base.metadata.create_all(bind=engine)


# 依赖项：获取数据库会话
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
