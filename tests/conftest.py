"""
测试公共夹具：模型/embedding/存储的内存替身
"""
from typing import Dict, List, Optional, Sequence

import numpy as np
import pytest

from pawmatch.config import settings
from pawmatch.core.types import Pet, PetStatus, Species, User
from pawmatch.nlp.exceptions import RetrievalError

DIM = settings.PG_VECTOR_DIM


def unit_vector(index: int, weight: float = 1.0) -> List[float]:
    """固定维度的单位向量（第 index 维为 weight）"""
    vector = [0.0] * DIM
    vector[index % DIM] = weight
    return vector


def blend(*parts: Sequence[float]) -> List[float]:
    return np.sum(np.asarray(parts, dtype=np.float64), axis=0).tolist()


class FakeLLM:
    """按顺序返回预设回复，并记录每次调用"""

    def __init__(self, responses: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.responses = list(responses or [])
        self.error = error
        self.calls: List[tuple] = []
        self.stream_chunks: List[str] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        if not self.responses:
            return ""
        return self.responses.pop(0)

    async def stream(self, prompt: str):
        self.calls.append((None, prompt))
        for chunk in self.stream_chunks:
            yield chunk


class FakeEmbedder:
    """返回固定向量（或抛出预设异常），并记录输入文本"""

    def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None):
        self.vector = vector if vector is not None else unit_vector(0)
        self.error = error
        self.texts: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    return float(1.0 - va.dot(vb) / (np.linalg.norm(va) * np.linalg.norm(vb)))


class InMemoryPetDAO:
    """PetDAO 的内存实现（余弦距离）"""

    def __init__(self, pets: Optional[List[Pet]] = None):
        self.pets: Dict[int, Pet] = {}
        self.search_calls: List[tuple] = []
        self.error: Optional[Exception] = None
        for pet in pets or []:
            self.pets[pet.id] = pet

    async def find_open(self, species: Optional[Species] = None, limit: Optional[int] = None) -> List[Pet]:
        result = [
            pet for _, pet in sorted(self.pets.items())
            if pet.status == PetStatus.OPEN and (species is None or pet.species == species)
        ]
        return result[:limit] if limit is not None else result

    async def find_by_id(self, pet_id: int) -> Optional[Pet]:
        return self.pets.get(pet_id)

    async def save(self, pet: Pet) -> Pet:
        pet_id = pet.id if pet.id is not None else max(self.pets, default=0) + 1
        saved = pet.model_copy(update={"id": pet_id})
        self.pets[pet_id] = saved
        return saved

    async def hybrid_search(self, species: Optional[Species], query_vector: Sequence[float], limit: int) -> List[Pet]:
        self.search_calls.append((species, list(query_vector), limit))
        if self.error is not None:
            raise self.error
        if not query_vector:
            raise ValueError("hybrid_search 需要非空查询向量")
        eligible = [
            pet.model_copy(update={"distance": cosine_distance(pet.personality_vector, query_vector)})
            for pet in self.pets.values()
            if pet.status == PetStatus.OPEN
            and (species is None or pet.species == species)
            and pet.personality_vector
        ]
        eligible.sort(key=lambda pet: (pet.distance, pet.id))
        return eligible[:limit]


class InMemoryUserDAO:
    """UserDAO 的内存实现"""

    def __init__(self, users: Optional[List[User]] = None):
        self.users: Dict[int, User] = {user.id: user for user in users or []}
        self.saved_profiles: List[tuple] = []

    async def find_by_id(self, user_id: int) -> Optional[User]:
        user = self.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def save(self, user: User) -> User:
        self.users[user.id] = user
        return user

    async def save_profile(self, user_id: int, summary: str, vector: Sequence[float]) -> None:
        if user_id not in self.users:
            raise RetrievalError(f"更新用户画像失败: 用户 {user_id} 不存在")
        self.saved_profiles.append((user_id, summary, list(vector)))
        self.users[user_id] = self.users[user_id].model_copy(
            update={"preference_summary": summary, "preference_vector": list(vector)}
        )


def make_pet(pet_id: int, species: Species = Species.CAT, status: PetStatus = PetStatus.OPEN,
             vector: Optional[List[float]] = None, **fields) -> Pet:
    return Pet(
        id=pet_id,
        name=fields.pop("name", f"pet-{pet_id}"),
        species=species,
        status=status,
        personality_vector=vector if vector is not None else unit_vector(pet_id),
        **fields,
    )


@pytest.fixture
def catalog() -> List[Pet]:
    """5只OPEN的猫、2只OPEN的狗、1只已领养的猫"""
    cats = [make_pet(i, Species.CAT, breed="Tabby", raw_description=f"cat {i}") for i in range(1, 6)]
    dogs = [make_pet(i, Species.DOG, breed="Shiba", raw_description=f"dog {i}") for i in (6, 7)]
    adopted = [make_pet(8, Species.CAT, PetStatus.ADOPTED, vector=unit_vector(0))]
    return cats + dogs + adopted


@pytest.fixture
def pet_store(catalog) -> InMemoryPetDAO:
    return InMemoryPetDAO(catalog)


@pytest.fixture
def user_store() -> InMemoryUserDAO:
    return InMemoryUserDAO([User(id=1, name="Ada", preference_summary="Likes quiet evenings.")])
