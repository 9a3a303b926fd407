"""
核心类型定义
"""
from enum import Enum
from typing import List, Dict, Literal, Optional, Any
from pydantic import BaseModel, Field


class Species(str, Enum):
    """物种"""
    CAT = "CAT"
    DOG = "DOG"


class PetStatus(str, Enum):
    """宠物生命周期状态（仅OPEN参与匹配）"""
    OPEN = "OPEN"
    MATCHED = "MATCHED"
    ADOPTED = "ADOPTED"


class Pet(BaseModel):
    """宠物档案（目录条目）"""
    id: Optional[int] = None
    name: str
    species: Species
    status: PetStatus = PetStatus.OPEN
    breed: Optional[str] = None
    age: Optional[str] = None
    energy: Optional[str] = None
    trait: Optional[str] = None
    location: Optional[str] = None
    raw_description: Optional[str] = None
    structured_tags: Optional[Dict[str, Any]] = None
    personality_vector: List[Optional[float]] = Field(default_factory=list)  # 空槽位写库时编码为 0
    owner_id: Optional[int] = None
    distance: Optional[float] = None  # 仅检索结果携带，与查询向量的距离


class User(BaseModel):
    """用户（偏好画像的所有者）"""
    id: int
    name: str = ""
    email: Optional[str] = None
    preference_summary: Optional[str] = None
    preference_vector: List[Optional[float]] = Field(default_factory=list)


class ProfileUpdate(BaseModel):
    """一次画像刷新的结果"""
    summary: str
    embedding: List[float] = Field(default_factory=list)


class RerankDecision(BaseModel):
    """单宠物重排决策（只由ResponseNormalizer构造）"""
    best_pet_id: Optional[str] = None
    explanation: str = ""
    confidence: float = 0.5
    highlights: List[str] = Field(default_factory=list)
    fallback: bool = False  # 是否为解析失败后的兜底决策


class RecommendationItem(BaseModel):
    """推荐条目"""
    id: str
    confidence: float


class InterviewStatus(str, Enum):
    """访谈状态"""
    COLLECTING = "COLLECTING"
    COMPLETE = "COMPLETE"


InterviewMode = Literal["fixed", "coverage"]


class Message(BaseModel):
    """访谈消息"""
    role: str = "assistant"
    content: Optional[str] = None


class InterviewState(BaseModel):
    """访谈状态（每次由完整历史重新推导，不做存储）"""
    status: InterviewStatus = InterviewStatus.COLLECTING
    mode: InterviewMode = "fixed"
    answered: int = 0  # 历史中已回答的条数
    target: int = 0  # 固定题数模式的目标回答数；覆盖模式为维度数
    profile: Optional[str] = None
    next_questions: List[str] = Field(default_factory=list)
    coverage: Dict[str, bool] = Field(default_factory=dict)
    
    @property
    def complete(self) -> bool:
        return self.status == InterviewStatus.COMPLETE


class MatchResult(BaseModel):
    """单宠物匹配结果"""
    best_pet: Optional[Pet] = None
    explanation: str = ""
    confidence: Optional[float] = None
    highlights: List[str] = Field(default_factory=list)
    candidates: List[Pet] = Field(default_factory=list)


class QuestionAnswer(BaseModel):
    """访谈问答对"""
    question: Optional[str] = None
    answer: Optional[str] = None


class PetCard(BaseModel):
    """面向客户端的宠物卡片"""
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
    def from_pet(cls, pet: Pet) -> "PetCard":
        return cls(
            id=str(pet.id) if pet.id is not None else None,
            name=pet.name,
            breed=pet.breed,
            age=pet.age,
            energy=pet.energy,
            trait=pet.trait,
            location=pet.location,
            icon="cat" if pet.species == Species.CAT else "dog",
            tone="#DCEBFF" if pet.species == Species.CAT else "#FDE2B3",
        )


class AgentRecommendation(BaseModel):
    """Agent多条推荐结果"""
    items: List[RecommendationItem] = Field(default_factory=list)
    raw_response: str = ""
    prompt: str = ""
    debug: str = ""


class EvaluationOutcome(BaseModel):
    """一次访谈评估的结果"""
    state: InterviewState
    prompt: str = ""
    raw_response: str = ""
