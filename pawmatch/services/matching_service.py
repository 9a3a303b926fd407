"""
匹配编排：画像刷新 -> 物种识别 -> 混合检索 -> LLM重排 -> 输出规范化
"""
import json
from typing import List, Optional

from pawmatch.config import settings
from pawmatch.core.types import MatchResult, Pet, Species, User
from pawmatch.nlp.exceptions import NotFoundError, ValidationError
from pawmatch.nlp.llm_api import LLMAPI, llm_api
from pawmatch.nlp.normalizer import parse_rerank_decision
from pawmatch.nlp.prompts import PromptManager, prompt_manager
from pawmatch.nlp.species import detect_species_by_keyword, parse_species_token
from pawmatch.services.profile_builder import ProfileBuilder, profile_builder
from pawmatch.services.retriever import CandidateRetriever, candidate_retriever
from pawmatch.storage.dao import UserDAO, user_dao
from pawmatch.logs import setup_logger, log_metric

logger = setup_logger(__name__)

NO_MATCH_EXPLANATION = "No suitable pets found."


class MatchingService:
    """单宠物匹配服务"""

    def __init__(
        self,
        users: UserDAO = user_dao,
        builder: ProfileBuilder = profile_builder,
        retriever: CandidateRetriever = candidate_retriever,
        llm: LLMAPI = llm_api,
        prompts: PromptManager = prompt_manager,
        candidate_limit: Optional[int] = None
    ):
        self.users = users
        self.builder = builder
        self.retriever = retriever
        self.llm = llm
        self.prompts = prompts
        self.candidate_limit = candidate_limit or settings.MATCH_CANDIDATE_LIMIT

    @log_metric("match_requests")
    async def recommend(self, user_id: int, message: Optional[str]) -> MatchResult:
        """
        为用户推荐最合适的一只宠物

        Args:
            user_id: 用户ID
            message: 用户的最新消息

        Returns:
            MatchResult；没有候选时返回"无匹配"结果且不调用重排模型

        Raises:
            ValidationError: 消息为空
            NotFoundError: 用户不存在
            UpstreamError: LLM/Embedding/检索失败
        """
        text = (message or "").strip()
        if not text:
            raise ValidationError("Message is required.")

        user = await self.users.find_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User not found: {user_id}")

        update = await self.builder.refresh(user, text)
        species = await self.detect_species(text)

        if update.embedding:
            candidates = await self.retriever.search(species, update.embedding, self.candidate_limit)
        else:
            logger.warning(f"用户 {user_id} 没有可用向量，改用非向量候选")
            candidates = await self.retriever.list_open(species, self.candidate_limit)

        if not candidates:
            return MatchResult(best_pet=None, explanation=NO_MATCH_EXPLANATION, candidates=[])

        raw = await self.llm.complete(
            self.prompts.render("rerank_system"),
            self.build_rerank_prompt(user, candidates),
        )
        decision = parse_rerank_decision(raw, [str(pet.id) for pet in candidates])

        best_pet = next(
            (pet for pet in candidates if str(pet.id) == decision.best_pet_id),
            candidates[0],
        )
        logger.info(
            f"用户 {user_id} 匹配完成: best={best_pet.id}, confidence={decision.confidence}, "
            f"fallback={decision.fallback}, candidates={len(candidates)}"
        )
        return MatchResult(
            best_pet=best_pet,
            explanation=decision.explanation,
            confidence=decision.confidence,
            highlights=decision.highlights,
            candidates=candidates,
        )

    async def detect_species(self, message: str) -> Optional[Species]:
        """关键词识别物种；关键词未命中时才调用一次单词分类"""
        species = detect_species_by_keyword(message)
        if species is not None:
            return species
        answer = await self.llm.complete(self.prompts.render("species_system"), message)
        return parse_species_token(answer)

    def build_rerank_prompt(self, user: User, pets: List[Pet]) -> str:
        """构建重排prompt：用户画像 + 每个候选的原始属性/描述/标签"""
        pet_blocks = "\n".join(self.format_pet(pet) for pet in pets)
        return self.prompts.render(
            "rerank_user",
            summary=user.preference_summary or "",
            pets=pet_blocks,
        )

    def format_pet(self, pet: Pet) -> str:
        tags = json.dumps(pet.structured_tags, ensure_ascii=False) if pet.structured_tags else "{}"
        return self.prompts.render(
            "rerank_pet",
            id=pet.id,
            name=pet.name,
            species=pet.species.value,
            status=pet.status.value,
            breed=pet.breed or "",
            age=pet.age or "",
            location=pet.location or "",
            description=pet.raw_description or "",
            tags=tags,
        )


# 全局实例
matching_service = MatchingService()
