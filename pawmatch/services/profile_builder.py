"""
偏好画像构建：对话 -> 偏好摘要 -> embedding -> 持久化
"""
from typing import Optional

from pawmatch.config import settings
from pawmatch.core.types import ProfileUpdate, User
from pawmatch.nlp.exceptions import EmbeddingError, VectorFormatError
from pawmatch.nlp.llm_api import LLMAPI, llm_api
from pawmatch.nlp.prompts import PromptManager, prompt_manager
from pawmatch.services.embed_service import EmbeddingService, embedding_service
from pawmatch.storage.dao import UserDAO, user_dao
from pawmatch.utils.vector_codec import check_dimension
from pawmatch.logs import setup_logger

logger = setup_logger(__name__)


class ProfileBuilder:
    """偏好画像构建器"""

    def __init__(
        self,
        llm: LLMAPI = llm_api,
        embedder: EmbeddingService = embedding_service,
        users: UserDAO = user_dao,
        prompts: PromptManager = prompt_manager
    ):
        self.llm = llm
        self.embedder = embedder
        self.users = users
        self.prompts = prompts

    async def summarize(self, current_summary: Optional[str], message: str) -> str:
        """根据当前摘要和新消息生成新的偏好摘要"""
        system_prompt = self.prompts.render("profile_summary_system")
        user_prompt = self.prompts.render(
            "profile_summary_user",
            current_summary=current_summary or "",
            message=message,
        )
        return await self.llm.complete(system_prompt, user_prompt)

    async def refresh(self, user: User, message: str) -> ProfileUpdate:
        """
        刷新用户偏好画像

        顺序固定：先生成摘要，再对摘要做embedding，最后持久化；
        返回之后检索才能使用新向量。摘要质量不做把关。

        Args:
            user: 画像所有者（会被原地更新）
            message: 用户的新消息

        Returns:
            ProfileUpdate（向量可能为空，表示没有可用向量）
        """
        summary = await self.summarize(user.preference_summary, message)
        embedding = await self.embedder.embed(summary)
        try:
            check_dimension(embedding, settings.PG_VECTOR_DIM)
        except VectorFormatError as e:
            raise EmbeddingError(str(e), cause=e) from e

        user.preference_summary = summary
        user.preference_vector = list(embedding)
        await self.users.save_profile(user.id, summary, user.preference_vector)

        logger.info(f"用户 {user.id} 偏好画像已更新: summary_len={len(summary)}, vector_dim={len(embedding)}")
        return ProfileUpdate(summary=summary, embedding=user.preference_vector)


# 全局实例
profile_builder = ProfileBuilder()
