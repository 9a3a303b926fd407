"""
API路由模块
"""
from typing import List

from fastapi import APIRouter, Depends

from pawmatch.agents.interview_agent import InterviewAgent, interview_agent
from pawmatch.agents.recommend_agent import AgentRecommender, agent_recommender
from pawmatch.config import settings
from pawmatch.core.types import PetCard
from pawmatch.nlp.exceptions import NotFoundError, ValidationError
from pawmatch.nlp.llm_api import LLMAPI, llm_api
from pawmatch.services.ingestion_service import PetIngestionService, pet_ingestion_service
from pawmatch.services.matching_service import MatchingService, matching_service
from pawmatch.services.stream_relay import StreamRelay
from pawmatch.storage.dao import PetDAO, pet_dao
from pawmatch.utils.schemas import (
    ChatRequest, MatchResponse, StreamRequest,
    EvaluationRequest, EvaluationResponse,
    RecommendationRequest, RecommendationResponse,
    PetCardView, PetView, PetIngestRequest,
)
from pawmatch.utils.sse import sse_response
from pawmatch.logs import setup_logger

logger = setup_logger(__name__)

# 创建路由器
router = APIRouter()


# =====================================================
# 依赖（测试中可通过 app.dependency_overrides 替换）
# =====================================================

def get_matching_service() -> MatchingService:
    return matching_service


def get_interview_agent() -> InterviewAgent:
    return interview_agent


def get_agent_recommender() -> AgentRecommender:
    return agent_recommender


def get_ingestion_service() -> PetIngestionService:
    return pet_ingestion_service


def get_pet_dao() -> PetDAO:
    return pet_dao


def get_llm() -> LLMAPI:
    return llm_api


# =====================================================
# 匹配对话
# =====================================================

@router.post("/chat", response_model=MatchResponse)
async def chat(request: ChatRequest, service: MatchingService = Depends(get_matching_service)):
    """单宠物匹配：刷新画像、检索、重排"""
    result = await service.recommend(request.user_id, request.message)
    return MatchResponse.from_result(result)


@router.post("/chat/stream")
async def chat_stream(request: StreamRequest, llm: LLMAPI = Depends(get_llm)):
    """流式对话（SSE：delta / done / error）"""
    message = (request.message or "").strip()
    if not message:
        raise ValidationError("Message is required.")
    relay = StreamRelay(llm.stream(message))
    return sse_response(relay.events())


# =====================================================
# Agent：访谈评估与多条推荐
# =====================================================

@router.post("/agent/evaluate", response_model=EvaluationResponse)
async def evaluate(request: EvaluationRequest, agent: InterviewAgent = Depends(get_interview_agent)):
    """评估访谈进度：返回完成信号、画像或下一批问题"""
    messages = [message.to_message() for message in request.messages]
    outcome = await agent.evaluate(messages, request.mode)
    return EvaluationResponse.from_outcome(outcome)


@router.post("/agent/recommend", response_model=RecommendationResponse)
async def recommend(
    request: RecommendationRequest,
    recommender: AgentRecommender = Depends(get_agent_recommender)
):
    """多条推荐：最多返回 RECOMMEND_TOP_N 条"""
    recommendation = await recommender.recommend(
        question_answers=[qa.to_question_answer() for qa in request.question_answers or []],
        messages=[message.to_message() for message in request.messages or []],
        evaluation=request.evaluation.model_dump(exclude_none=True) if request.evaluation else None,
        pets=[card.to_card() for card in request.pets or []],
    )
    return RecommendationResponse.from_recommendation(recommendation)


# =====================================================
# 宠物目录
# =====================================================

@router.get("/pets", response_model=List[PetCardView])
async def list_pets(pets: PetDAO = Depends(get_pet_dao)):
    """OPEN宠物卡片列表"""
    open_pets = await pets.find_open(limit=settings.AGENT_CANDIDATE_LIMIT)
    return [PetCardView.from_card(PetCard.from_pet(pet)) for pet in open_pets]


@router.get("/pets/{pet_id}", response_model=PetView)
async def get_pet(pet_id: int, pets: PetDAO = Depends(get_pet_dao)):
    """宠物详情"""
    pet = await pets.find_by_id(pet_id)
    if pet is None:
        raise NotFoundError(f"Pet not found: {pet_id}")
    return PetView.from_pet(pet)


@router.post("/pets/ingest", response_model=PetView)
async def ingest_pet(
    request: PetIngestRequest,
    service: PetIngestionService = Depends(get_ingestion_service)
):
    """新宠物入库：标签提取、画像生成、embedding、保存"""
    pet = await service.process_new_pet(
        request.name,
        request.description,
        request.species,
        owner_id=request.owner_id,
        breed=request.breed,
        age=request.age,
        energy=request.energy,
        trait=request.trait,
        location=request.location,
    )
    return PetView.from_pet(pet)
