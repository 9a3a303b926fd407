"""
Pydantic模型定义（HTTP请求/响应，JSON字段为camelCase）
"""
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import List, Dict, Optional, Any

from pawmatch.core.types import (
    AgentRecommendation, EvaluationOutcome, MatchResult, Message, Pet, PetCard,
    PetStatus, QuestionAnswer, RecommendationItem, Species,
)


class CamelModel(BaseModel):
    """camelCase别名，同时接受字段原名"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =====================================================
# 宠物模型
# =====================================================

class PetView(CamelModel):
    """宠物详情（不含向量）"""
    id: Optional[int] = None
    name: str
    species: Species
    status: PetStatus
    breed: Optional[str] = None
    age: Optional[str] = None
    energy: Optional[str] = None
    trait: Optional[str] = None
    location: Optional[str] = None
    raw_description: Optional[str] = None
    structured_tags: Optional[Dict[str, Any]] = None
    owner_id: Optional[int] = None
    distance: Optional[float] = Field(None, description="与查询向量的距离（仅检索结果）")

    @classmethod
    def from_pet(cls, pet: Pet) -> "PetView":
        return cls(**pet.model_dump(exclude={"personality_vector"}))


class PetCardView(CamelModel):
    """宠物卡片（客户端展示与推荐候选）"""
    id: Optional[str] = None
    name: Optional[str] = None
    breed: Optional[str] = None
    age: Optional[str] = None
    energy: Optional[str] = None
    trait: Optional[str] = None
    location: Optional[str] = None
    icon: Optional[str] = None
    tone: Optional[str] = None

    @classmethod
    def from_card(cls, card: PetCard) -> "PetCardView":
        return cls(**card.model_dump())

    def to_card(self) -> PetCard:
        return PetCard(**self.model_dump())


class PetIngestRequest(CamelModel):
    """新宠物入库请求"""
    name: Optional[str] = None
    description: Optional[str] = Field(None, description="原始描述")
    species: Optional[str] = Field(None, description="CAT | DOG")
    owner_id: Optional[int] = Field(None, description="发布者ID（默认AI发布者）")
    breed: Optional[str] = None
    age: Optional[str] = None
    energy: Optional[str] = None
    trait: Optional[str] = None
    location: Optional[str] = None


# =====================================================
# 单宠物匹配模型
# =====================================================

class ChatRequest(CamelModel):
    """匹配对话请求"""
    user_id: int
    message: Optional[str] = None


class MatchResponse(CamelModel):
    """单宠物匹配响应"""
    best_pet: Optional[PetView] = None
    explanation: str = ""
    confidence: Optional[float] = None
    highlights: List[str] = Field(default_factory=list)
    candidates: List[PetView] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: MatchResult) -> "MatchResponse":
        return cls(
            best_pet=PetView.from_pet(result.best_pet) if result.best_pet else None,
            explanation=result.explanation,
            confidence=result.confidence,
            highlights=result.highlights,
            candidates=[PetView.from_pet(pet) for pet in result.candidates],
        )


class StreamRequest(CamelModel):
    """流式对话请求"""
    message: Optional[str] = None


# =====================================================
# Agent模型
# =====================================================

class AgentMessageView(CamelModel):
    """访谈消息"""
    role: Optional[str] = None
    content: Optional[str] = None

    def to_message(self) -> Message:
        return Message(role=self.role or "assistant", content=self.content)


class QuestionAnswerView(CamelModel):
    """问答对"""
    question: Optional[str] = None
    answer: Optional[str] = None

    def to_question_answer(self) -> QuestionAnswer:
        return QuestionAnswer(question=self.question, answer=self.answer)


class EvaluationRequest(CamelModel):
    """访谈评估请求"""
    messages: List[AgentMessageView] = Field(default_factory=list)
    mode: Optional[str] = Field(None, description="fixed | coverage（默认读取配置）")


class EvaluationResponse(CamelModel):
    """访谈评估响应"""
    endverification: bool
    profile: Optional[str] = None
    next_questions: List[str] = Field(default_factory=list)
    answered: int = 0
    target: int = 0
    coverage: Dict[str, bool] = Field(default_factory=dict)
    prompt: str = ""
    raw_response: str = ""

    @classmethod
    def from_outcome(cls, outcome: EvaluationOutcome) -> "EvaluationResponse":
        state = outcome.state
        return cls(
            endverification=state.complete,
            profile=state.profile,
            next_questions=state.next_questions,
            answered=state.answered,
            target=state.target,
            coverage=state.coverage,
            prompt=outcome.prompt,
            raw_response=outcome.raw_response,
        )


class EvaluationSummaryView(CamelModel):
    """访谈评估摘要（推荐请求携带）"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")
    profile: Optional[str] = None


class RecommendationRequest(CamelModel):
    """多条推荐请求"""
    question_answers: Optional[List[QuestionAnswerView]] = None
    messages: Optional[List[AgentMessageView]] = None
    evaluation: Optional[EvaluationSummaryView] = None
    pets: Optional[List[PetCardView]] = None


class RecommendationItemView(CamelModel):
    """推荐条目"""
    id: str
    confidence: float

    @classmethod
    def from_item(cls, item: RecommendationItem) -> "RecommendationItemView":
        return cls(id=item.id, confidence=item.confidence)


class RecommendationResponse(CamelModel):
    """多条推荐响应"""
    items: List[RecommendationItemView] = Field(default_factory=list)
    raw_response: str = ""
    prompt: str = ""
    debug: str = ""

    @classmethod
    def from_recommendation(cls, recommendation: AgentRecommendation) -> "RecommendationResponse":
        return cls(
            items=[RecommendationItemView.from_item(item) for item in recommendation.items],
            raw_response=recommendation.raw_response,
            prompt=recommendation.prompt,
            debug=recommendation.debug,
        )
