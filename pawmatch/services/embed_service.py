"""
Embedding服务
"""
from typing import List

import aiohttp
import numpy as np

from pawmatch.config import settings
from pawmatch.core.config import agent_settings
from pawmatch.logs import setup_logger, log_metric
from pawmatch.nlp.exceptions import EmbeddingError

logger = setup_logger(__name__)


class EmbeddingService:
    """Embedding生成服务"""

    def __init__(self):
        self.api_key = agent_settings.EMBEDDING_API_KEY or agent_settings.LLM_API_KEY
        self.base_url = agent_settings.EMBEDDING_BASE_URL
        self.model = agent_settings.EMBEDDING_MODEL
        self.timeout = agent_settings.EMBEDDING_TIMEOUT
        self.dim = settings.PG_VECTOR_DIM

        if not self.api_key:
            logger.warning("EMBEDDING_API_KEY未设置，embedding功能将不可用")

    @log_metric("embedding_requests")
    async def embed(self, text: str) -> List[float]:
        """
        生成单个文本的embedding

        Args:
            text: 输入文本

        Returns:
            固定维度的向量；空文本或未配置密钥时返回空列表（表示"没有向量"）

        Raises:
            EmbeddingError: API调用失败或返回的向量非法
        """
        if not text or not text.strip():
            return []
        if not self.api_key:
            logger.warning("Embedding API密钥未配置，返回空向量")
            return []

        url = f"{self.base_url.rstrip('/')}/embeddings"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }
        payload = {
            "model": self.model,
            "input": text
        }

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    headers=headers,
                    json=payload,
                    timeout=aiohttp.ClientTimeout(total=self.timeout)
                ) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        logger.error(f"Embedding API错误: {resp.status} - {error_text}")
                        raise EmbeddingError(f"Embedding API错误: {resp.status}")
                    data = await resp.json()
        except (aiohttp.ClientError, TimeoutError) as e:
            logger.error(f"Embedding API调用失败: {e}")
            raise EmbeddingError(f"Embedding API调用失败: {e}", cause=e) from e

        items = data.get("data") or []
        if not items or not items[0].get("embedding"):
            logger.error("Embedding API返回空数据")
            return []

        return self.validate(items[0]["embedding"])

    def validate(self, raw) -> List[float]:
        """校验维度与数值合法性，返回普通浮点列表"""
        vector = np.asarray(raw, dtype=np.float64)
        if vector.ndim != 1 or vector.shape[0] != self.dim:
            raise EmbeddingError(f"Embedding维度不匹配: 期望 {self.dim}，实际 {vector.shape}")
        if not np.all(np.isfinite(vector)):
            raise EmbeddingError("Embedding包含非有限数值")
        return vector.tolist()


# 全局实例
embedding_service = EmbeddingService()
