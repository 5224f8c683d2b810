# backend/config.py
import os

from dotenv import load_dotenv

load_dotenv()

# 数据目录：sqlite 数据库 + 媒体库（images / videos）
DATA_DIR = os.path.abspath(os.getenv("FRAMECHAIN_DATA_DIR", "./data"))
LIBRARY_DIR = os.getenv("LIBRARY_DIR") or os.path.join(DATA_DIR, "library")
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite:///{os.path.join(DATA_DIR, 'framechain.db')}"

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
KLING_ACCESS_KEY = os.getenv("KLING_ACCESS_KEY")
KLING_SECRET_KEY = os.getenv("KLING_SECRET_KEY")
HAILUO_API_KEY = os.getenv("HAILUO_API_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:7860").split(",")
                if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def provider_credentials():
    """各供应商适配器的构造参数（按 Provider 枚举值索引）"""
    return {
        "Gemini": {"api_key": GEMINI_API_KEY},
        "Kling": {"access_key": KLING_ACCESS_KEY, "secret_key": KLING_SECRET_KEY},
        "Hailuo": {"api_key": HAILUO_API_KEY},
        "OpenAI": {"api_key": OPENAI_API_KEY},
    }
