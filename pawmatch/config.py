"""
统一配置模块
"""
import os
from pathlib import Path
from typing import Optional
from pydantic_settings import BaseSettings
from pydantic import ConfigDict

# 获取包目录的绝对路径
PACKAGE_DIR = Path(__file__).parent.resolve()
ENV_FILE_PATH = PACKAGE_DIR.parent / ".env"


class Settings(BaseSettings):
    """应用配置"""
    
    # 应用基础配置
    APP_NAME: str = "Pawmatch 领养匹配服务"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    
    # 服务器配置
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", "8000"))
    
    # PostgreSQL配置
    PG_HOST: str = os.getenv("PG_HOST", "localhost")
    PG_PORT: int = int(os.getenv("PG_PORT", "5432"))
    PG_DB: str = os.getenv("PG_DB", "pawmatch")
    PG_USER: str = os.getenv("PG_USER", "postgres")
    PG_PASSWORD: str = os.getenv("PG_PASSWORD", "")
    PG_VECTOR_DIM: int = 1536  # 向量维度（与embedding模型一致）
    PG_ENABLED: bool = os.getenv("PG_ENABLED", "true").lower() == "true"
    
    # 向量距离度量：cosine / inner_product / l2
    # 索引与查询共用同一个度量，不允许混用
    VECTOR_METRIC: str = os.getenv("VECTOR_METRIC", "cosine")
    
    # 匹配配置
    MATCH_CANDIDATE_LIMIT: int = int(os.getenv("MATCH_CANDIDATE_LIMIT", "5"))  # 单宠物匹配候选数
    AGENT_CANDIDATE_LIMIT: int = int(os.getenv("AGENT_CANDIDATE_LIMIT", "50"))  # Agent推荐候选数
    RECOMMEND_TOP_N: int = 3  # Agent推荐返回数量
    
    # 访谈配置
    INTERVIEW_MODE: str = os.getenv("INTERVIEW_MODE", "fixed")  # fixed or coverage
    INTERVIEW_TARGET_ANSWERS: int = 15  # 固定题数模式的目标回答数
    INTERVIEW_BATCH_SIZE: int = 5  # 固定题数模式每批问题数
    
    # 流式对话配置
    STREAM_TIMEOUT: float = float(os.getenv("STREAM_TIMEOUT", "60"))  # 秒
    STREAM_QUEUE_MAX_SIZE: int = 50
    
    # AI生成宠物的归属用户（启动时解析，未配置则为空）
    AI_OWNER_ID: Optional[int] = int(os.getenv("AI_OWNER_ID")) if os.getenv("AI_OWNER_ID") else None
    
    # 日志配置
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")  # json or text
    
    # Pydantic V2 配置
    model_config = ConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )


# 全局配置实例
settings = Settings()
