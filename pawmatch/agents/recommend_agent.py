"""
Agent多条推荐：候选选择 -> 一次模型调用 -> 输出规范化

候选来源：
1. 有检索文本且 embedding 非空：向量检索（物种按关键词过滤）
2. 否则：客户端提供的宠物卡片（按上限截断）

这条路径永远返回结构完整的结果：上游失败时降级为兜底候选或按候选顺序补齐。
"""
import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pawmatch.agents.conversation import (
    NO_ANSWERS, NO_CONVERSATION, format_messages, format_question_answers, normalize_text,
)
from pawmatch.config import settings
from pawmatch.core.types import AgentRecommendation, Message, Pet, PetCard, QuestionAnswer
from pawmatch.nlp.exceptions import LLMError, UpstreamError
from pawmatch.nlp.llm_api import LLMAPI, llm_api
from pawmatch.nlp.normalizer import parse_recommendation_items
from pawmatch.nlp.prompts import PromptManager, prompt_manager
from pawmatch.nlp.species import detect_species_by_keyword
from pawmatch.services.embed_service import EmbeddingService, embedding_service
from pawmatch.services.retriever import CandidateRetriever, candidate_retriever
from pawmatch.logs import setup_logger, log_metric

logger = setup_logger(__name__)

VECTOR_PREVIEW_SIZE = 6


def format_vector_preview(vector: Optional[Sequence[float]], limit: int = VECTOR_PREVIEW_SIZE) -> str:
    """向量预览：前limit个分量保留6位小数，超出部分以 ... 表示"""
    if not vector:
        return "[]"
    values = ["0" if v is None else f"{float(v):.6f}" for v in vector[:limit]]
    preview = ",".join(values)
    if len(vector) > limit:
        preview += ",..."
    return f"[{preview}]"


def join_ids(ids: Sequence[Any]) -> str:
    present = [str(item) for item in ids if item is not None]
    return f"[{', '.join(present)}]"


class DebugTrace:
    """候选选择过程的调试记录（key=value 行）"""

    def __init__(self):
        self.lines: List[str] = []

    def add(self, key: str, value: Any):
        if isinstance(value, bool):
            value = str(value).lower()
        self.lines.append(f"{key}={value}")

    def render(self) -> str:
        return "\n".join(self.lines) + "\n" if self.lines else ""


class AgentRecommender:
    """Agent多条推荐器"""

    def __init__(
        self,
        embedder: EmbeddingService = embedding_service,
        retriever: CandidateRetriever = candidate_retriever,
        llm: LLMAPI = llm_api,
        prompts: PromptManager = prompt_manager,
        candidate_limit: Optional[int] = None,
        top_n: Optional[int] = None
    ):
        self.embedder = embedder
        self.retriever = retriever
        self.llm = llm
        self.prompts = prompts
        self.candidate_limit = candidate_limit or settings.AGENT_CANDIDATE_LIMIT
        self.top_n = top_n or settings.RECOMMEND_TOP_N

    @log_metric("recommend_requests")
    async def recommend(
        self,
        question_answers: Optional[List[QuestionAnswer]] = None,
        messages: Optional[List[Message]] = None,
        evaluation: Optional[Dict[str, Any]] = None,
        pets: Optional[List[PetCard]] = None
    ) -> AgentRecommendation:
        """
        推荐最多 top_n 只宠物

        Args:
            question_answers: 访谈问答
            messages: 对话历史
            evaluation: 访谈评估结果（至少包含 profile）
            pets: 客户端提供的候选卡片（无向量时使用）

        Returns:
            AgentRecommendation；候选为空时 items 为空
        """
        cards, debug = await self.select_candidates(question_answers, messages, evaluation, pets)
        if not cards:
            return AgentRecommendation(items=[], raw_response="", prompt="", debug=debug)

        candidate_ids = [card.id for card in cards if card.id]
        prompt = self.build_prompt(question_answers, messages, evaluation, cards)
        try:
            raw = await self.llm.complete(
                self.prompts.render("recommend_system", top_n=self.top_n),
                prompt,
            )
        except LLMError as e:
            logger.warning(f"推荐模型调用失败，按候选顺序补齐: {e}")
            raw = ""

        items = parse_recommendation_items(raw, candidate_ids, self.top_n)
        logger.info(f"Agent推荐完成: candidates={len(candidate_ids)}, items={[item.id for item in items]}")
        return AgentRecommendation(items=items, raw_response=raw or "", prompt=prompt, debug=debug)

    async def select_candidates(
        self,
        question_answers: Optional[List[QuestionAnswer]],
        messages: Optional[List[Message]],
        evaluation: Optional[Dict[str, Any]],
        pets: Optional[List[PetCard]]
    ) -> Tuple[List[PetCard], str]:
        """选择候选卡片并记录调试信息"""
        limit = self.candidate_limit
        provided = list(pets or [])
        text, source = self.search_payload(question_answers, messages, evaluation)

        trace = DebugTrace()
        trace.add("candidate.limit", limit)
        trace.add("request.evaluation.present", evaluation is not None)
        trace.add("request.messages.count", len(messages or []))
        trace.add("request.questionAnswers.count", len(question_answers or []))
        trace.add("request.pets.count", len(provided))
        trace.add("search.source", source)
        trace.add("search.text.length", len(text) if text else 0)
        if text:
            trace.add("search.text", text)

        cards: Optional[List[PetCard]] = None
        if text:
            cards = await self._search(text, limit, trace)

        if cards is None:
            # 没有 id 的卡片不占候选名额
            cards = [card for card in provided if card.id][:limit]
            trace.add("vector.search.skipped", True)
            trace.add("fallback.pets.count", len(cards))
            trace.add("fallback.pets.ids", join_ids([card.id for card in cards]))

        debug = trace.render()
        logger.info(f"Agent recommend debug:\n{debug}")
        return cards, debug

    async def _search(self, text: str, limit: int, trace: DebugTrace) -> Optional[List[PetCard]]:
        """向量检索；没有向量或上游失败时返回None（交给兜底）"""
        try:
            vector = await self.embedder.embed(text)
        except UpstreamError as e:
            logger.warning(f"检索文本embedding失败，使用客户端候选: {e}")
            trace.add("embedding.error", e.message)
            vector = []

        trace.add("embedding.size", len(vector))
        trace.add("embedding.preview", format_vector_preview(vector))
        species = detect_species_by_keyword(text)
        trace.add("species.filter", species.value if species else "none")
        if not vector:
            return None

        try:
            candidates: List[Pet] = await self.retriever.search(species, vector, limit)
        except UpstreamError as e:
            logger.warning(f"向量检索失败，使用客户端候选: {e}")
            trace.add("vector.search.error", e.message)
            return None

        trace.add("vector.search.limit", limit)
        trace.add("vector.search.result.count", len(candidates))
        trace.add("vector.search.result.ids", join_ids([pet.id for pet in candidates]))
        cards = [PetCard.from_pet(pet) for pet in candidates if pet.id is not None]
        trace.add("response.pets.count", len(cards))
        trace.add("response.pets.ids", join_ids([card.id for card in cards]))
        return cards

    def search_payload(
        self,
        question_answers: Optional[List[QuestionAnswer]],
        messages: Optional[List[Message]],
        evaluation: Optional[Dict[str, Any]]
    ) -> Tuple[Optional[str], str]:
        """
        检索文本：评估画像 > 问答 > 对话，第一个非空的胜出

        Returns:
            (文本, 来源)；都为空时为 (None, "none")
        """
        if evaluation is not None:
            profile = evaluation.get("profile")
            profile = normalize_text(profile) if isinstance(profile, str) else None
            if profile:
                return profile, "evaluation.profile"
        if question_answers:
            qa_text = format_question_answers(question_answers)
            if qa_text != NO_ANSWERS:
                return qa_text, "questionAnswers"
        if messages:
            conversation = format_messages(messages)
            if conversation != NO_CONVERSATION:
                return conversation, "messages"
        return None, "none"

    def build_prompt(
        self,
        question_answers: Optional[List[QuestionAnswer]],
        messages: Optional[List[Message]],
        evaluation: Optional[Dict[str, Any]],
        cards: List[PetCard]
    ) -> str:
        """有评估结果时用评估模板，否则用问答模板"""
        pets_json = json.dumps([card.model_dump() for card in cards], ensure_ascii=False)
        if evaluation is not None:
            return self.prompts.render(
                "recommend_evaluation_user",
                evaluation=json.dumps(evaluation, ensure_ascii=False),
                conversation=format_messages(messages),
                pets=pets_json,
            )
        return self.prompts.render(
            "recommend_qa_user",
            question_answers=format_question_answers(question_answers),
            pets=pets_json,
        )


# 全局实例
agent_recommender = AgentRecommender()
