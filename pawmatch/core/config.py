"""
模型配置模块（对话模型 / 向量模型）

匹配、访谈和推荐都要求模型输出 JSON，默认温度偏低。
"""
import os
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator

from pawmatch.config import ENV_FILE_PATH


class AgentSettings(BaseSettings):
    """模型接入配置（OpenAI 兼容接口）"""

    # 对话模型：重排、画像摘要、访谈评估、标签抽取共用
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4o-mini")
    LLM_API_KEY: str = os.getenv("LLM_API_KEY", "")
    LLM_BASE_URL: str = os.getenv("LLM_BASE_URL", "https://api.openai.com/v1")
    LLM_TEMPERATURE: float = float(os.getenv("LLM_TEMPERATURE", "0.2"))
    LLM_MAX_TOKENS: int = int(os.getenv("LLM_MAX_TOKENS", "1200"))
    LLM_TIMEOUT: float = float(os.getenv("LLM_TIMEOUT", "30"))

    # 向量模型：输出维度必须等于 PG_VECTOR_DIM；未配置密钥时复用 LLM_API_KEY
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
    EMBEDDING_API_KEY: str = os.getenv("EMBEDDING_API_KEY", "")
    EMBEDDING_BASE_URL: str = os.getenv("EMBEDDING_BASE_URL", "https://api.openai.com/v1")
    EMBEDDING_TIMEOUT: float = float(os.getenv("EMBEDDING_TIMEOUT", "10"))

    model_config = ConfigDict(
        env_file=str(ENV_FILE_PATH),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    @field_validator("LLM_BASE_URL", "EMBEDDING_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """去掉末尾斜杠，便于拼接 /embeddings 等路径"""
        return value.rstrip("/")

    @field_validator("LLM_TEMPERATURE")
    @classmethod
    def check_temperature(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError(f"LLM_TEMPERATURE 超出范围: {value}")
        return value


# 全局模型配置实例
agent_settings = AgentSettings()
