"""
单宠物匹配编排测试
"""
import json

import pytest

from pawmatch.core.types import Species
from pawmatch.nlp.exceptions import EmbeddingError, NotFoundError, ValidationError
from pawmatch.services.matching_service import NO_MATCH_EXPLANATION, MatchingService
from pawmatch.services.profile_builder import ProfileBuilder
from pawmatch.services.retriever import CandidateRetriever
from tests.conftest import FakeEmbedder, FakeLLM, InMemoryPetDAO, unit_vector


def build_service(llm, embedder, user_store, pet_store, candidate_limit=5):
    builder = ProfileBuilder(llm=llm, embedder=embedder, users=user_store)
    return MatchingService(
        users=user_store,
        builder=builder,
        retriever=CandidateRetriever(dao=pet_store),
        llm=llm,
        candidate_limit=candidate_limit,
    )


class TestMatchingService:
    """MatchingService.recommend"""

    async def test_cat_keyword_skips_classification(self, user_store, pet_store):
        rerank = json.dumps({"bestPetId": 2, "explanation": "Quiet and cuddly.", "confidence": 0.9,
                             "highlights": ["calm"]})
        llm = FakeLLM(["Wants a calm cat.", rerank])
        service = build_service(llm, FakeEmbedder(unit_vector(2)), user_store, pet_store)

        result = await service.recommend(1, "I'd love a quiet cat for my flat")

        assert len(llm.calls) == 2  # 摘要 + 重排，没有物种分类调用
        species, _, limit = pet_store.search_calls[0]
        assert species == Species.CAT
        assert limit == 5
        assert result.best_pet.id == 2
        assert result.explanation == "Quiet and cuddly."
        assert result.confidence == pytest.approx(0.9)
        assert result.highlights == ["calm"]
        assert all(pet.species == Species.CAT for pet in result.candidates)
        assert result.candidates[0].id == 2

    async def test_classification_call_when_no_keyword(self, user_store, pet_store):
        llm = FakeLLM(["Active person.", "DOG", '{"bestPetId": 7, "explanation": "Loves runs."}'])
        service = build_service(llm, FakeEmbedder(unit_vector(7)), user_store, pet_store)

        result = await service.recommend(1, "I go running every morning")

        assert len(llm.calls) == 3
        assert llm.calls[1][1] == "I go running every morning"
        assert pet_store.search_calls[0][0] == Species.DOG
        assert result.best_pet.id == 7

    async def test_unrecognized_classification_means_no_filter(self, user_store, pet_store):
        llm = FakeLLM(["Summary.", "NONE", '{"bestPetId": 1}'])
        service = build_service(llm, FakeEmbedder(unit_vector(6)), user_store, pet_store)

        result = await service.recommend(1, "Something gentle please")

        assert pet_store.search_calls[0][0] is None
        assert result.candidates[0].id == 6

    async def test_empty_candidates_skip_rerank(self, user_store):
        llm = FakeLLM(["Wants a cat."])
        service = build_service(llm, FakeEmbedder(unit_vector(1)), user_store, InMemoryPetDAO([]))

        result = await service.recommend(1, "a cat please")

        assert len(llm.calls) == 1
        assert result.best_pet is None
        assert result.explanation == NO_MATCH_EXPLANATION
        assert result.candidates == []

    async def test_hallucinated_winner_defaults_to_first_candidate(self, user_store, pet_store):
        llm = FakeLLM(["Summary.", "I think pet 42 is great"])
        service = build_service(llm, FakeEmbedder(unit_vector(3)), user_store, pet_store)

        result = await service.recommend(1, "a kitten")

        assert result.best_pet.id == result.candidates[0].id == 3
        assert result.explanation == "I think pet 42 is great"
        assert result.confidence == 0.5

    async def test_rerank_prompt_lists_every_candidate(self, user_store, pet_store):
        llm = FakeLLM(["Summary text.", '{"bestPetId": 1}'])
        service = build_service(llm, FakeEmbedder(unit_vector(1)), user_store, pet_store, candidate_limit=3)

        result = await service.recommend(1, "a cat")

        rerank_prompt = llm.calls[1][1]
        assert "UserPreferenceSummary: Summary text." in rerank_prompt
        for pet in result.candidates:
            assert f"PetId: {pet.id}" in rerank_prompt
            assert pet.raw_description in rerank_prompt
        assert len(result.candidates) == 3

    async def test_profile_persisted_before_retrieval(self, user_store, pet_store):
        llm = FakeLLM(["New summary.", '{"bestPetId": 1}'])
        embedder = FakeEmbedder(unit_vector(1))
        service = build_service(llm, embedder, user_store, pet_store)

        await service.recommend(1, "a cat")

        assert embedder.texts == ["New summary."]
        assert user_store.saved_profiles[0][:2] == (1, "New summary.")
        assert user_store.users[1].preference_summary == "New summary."

    async def test_empty_embedding_uses_non_vector_path(self, user_store, pet_store):
        llm = FakeLLM(["Summary.", '{"bestPetId": 2}'])
        service = build_service(llm, FakeEmbedder([]), user_store, pet_store)

        result = await service.recommend(1, "a cat")

        assert pet_store.search_calls == []
        assert [pet.id for pet in result.candidates] == [1, 2, 3, 4, 5]
        assert result.best_pet.id == 2

    async def test_blank_message_rejected_before_any_call(self, user_store, pet_store):
        llm = FakeLLM()
        service = build_service(llm, FakeEmbedder(), user_store, pet_store)
        with pytest.raises(ValidationError):
            await service.recommend(1, "   ")
        assert llm.calls == []

    async def test_unknown_user(self, user_store, pet_store):
        llm = FakeLLM()
        service = build_service(llm, FakeEmbedder(), user_store, pet_store)
        with pytest.raises(NotFoundError):
            await service.recommend(404, "a cat")
        assert llm.calls == []

    async def test_embedding_failure_surfaces(self, user_store, pet_store):
        llm = FakeLLM(["Summary."])
        service = build_service(llm, FakeEmbedder(error=EmbeddingError("boom")), user_store, pet_store)
        with pytest.raises(EmbeddingError):
            await service.recommend(1, "a cat")
