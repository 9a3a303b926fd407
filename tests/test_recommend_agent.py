"""
Agent多条推荐测试
"""
import json

import pytest

from pawmatch.agents.recommend_agent import AgentRecommender, format_vector_preview
from pawmatch.core.types import Message, PetCard, QuestionAnswer, Species
from pawmatch.nlp.exceptions import EmbeddingError, LLMError, RetrievalError
from pawmatch.services.retriever import CandidateRetriever
from tests.conftest import FakeEmbedder, FakeLLM, unit_vector


def client_cards(count: int):
    return [PetCard(id=f"c{i}", name=f"Client {i}") for i in range(1, count + 1)]


@pytest.fixture
def make_recommender(pet_store):
    def factory(llm, embedder, candidate_limit=50):
        return AgentRecommender(
            embedder=embedder,
            retriever=CandidateRetriever(dao=pet_store),
            llm=llm,
            candidate_limit=candidate_limit,
            top_n=3,
        )
    return factory


class TestSearchPayload:
    """检索文本优先级"""

    def test_evaluation_profile_wins(self, make_recommender):
        recommender = make_recommender(FakeLLM(), FakeEmbedder())
        text, source = recommender.search_payload(
            [QuestionAnswer(question="Q", answer="A")],
            [Message(role="user", content="hi")],
            {"profile": "  Loves cats  "},
        )
        assert (text, source) == ("Loves cats", "evaluation.profile")

    def test_question_answers_next(self, make_recommender):
        recommender = make_recommender(FakeLLM(), FakeEmbedder())
        text, source = recommender.search_payload(
            [QuestionAnswer(question="Home?", answer="Flat")], None, {"profile": " "},
        )
        assert (text, source) == ("Q: Home?\nA: Flat", "questionAnswers")

    def test_messages_last(self, make_recommender):
        recommender = make_recommender(FakeLLM(), FakeEmbedder())
        text, source = recommender.search_payload(
            [QuestionAnswer(question="Home?", answer=" ")], [Message(role="user", content="a dog")], None,
        )
        assert (text, source) == ("user: a dog", "messages")

    def test_nothing(self, make_recommender):
        recommender = make_recommender(FakeLLM(), FakeEmbedder())
        assert recommender.search_payload(None, [], None) == (None, "none")


class TestAgentRecommender:
    """AgentRecommender.recommend"""

    async def test_vector_path_with_species_filter(self, make_recommender, pet_store):
        llm = FakeLLM(['{"items": [{"id": "3", "confidence": 0.9}, {"id": "99", "confidence": 0.8}]}'])
        recommender = make_recommender(llm, FakeEmbedder(unit_vector(3)))

        result = await recommender.recommend(evaluation={"profile": "Quiet flat, wants a cat"})

        species, _, limit = pet_store.search_calls[0]
        assert species == Species.CAT
        assert limit == 50
        assert [(item.id, item.confidence) for item in result.items] == [("3", 0.9), ("1", 0.5), ("2", 0.5)]
        assert "Evaluation Summary:" in result.prompt
        assert '"profile": "Quiet flat, wants a cat"' in result.prompt
        assert result.raw_response.startswith('{"items"')
        assert "search.source=evaluation.profile" in result.debug
        assert "species.filter=CAT" in result.debug
        assert "vector.search.result.ids=[3, 1, 2, 4, 5]" in result.debug

    async def test_prompt_carries_pet_cards_as_json(self, make_recommender):
        llm = FakeLLM(["[]"])
        recommender = make_recommender(llm, FakeEmbedder(unit_vector(6)))

        result = await recommender.recommend(question_answers=[QuestionAnswer(question="Pet?", answer="A puppy")])

        assert result.prompt.startswith("User Q&A:\nQ: Pet?\nA: A puppy")
        cards = json.loads(result.prompt.split("Pet Cards:\n", 1)[1])
        assert [card["id"] for card in cards] == ["6", "7"]
        assert cards[0]["icon"] == "dog"
        assert [item.id for item in result.items] == ["6", "7"]

    async def test_empty_embedding_falls_back_to_client_pets(self, make_recommender, pet_store):
        llm = FakeLLM(['{"ids": ["c2"]}'])
        recommender = make_recommender(llm, FakeEmbedder([]), candidate_limit=4)

        result = await recommender.recommend(
            messages=[Message(role="user", content="anything")], pets=client_cards(6),
        )

        assert pet_store.search_calls == []
        assert [item.id for item in result.items] == ["c2", "c1", "c3"]
        assert "vector.search.skipped=true" in result.debug
        assert "fallback.pets.count=4" in result.debug
        assert "embedding.preview=[]" in result.debug

    async def test_client_pets_without_id_do_not_take_slots(self, make_recommender):
        llm = FakeLLM(['{"ids": ["c1"]}'])
        recommender = make_recommender(llm, FakeEmbedder([]), candidate_limit=2)
        pets = [PetCard(name="No id"), PetCard(id="", name="Blank id")] + client_cards(3)

        result = await recommender.recommend(messages=[Message(role="user", content="anything")], pets=pets)

        assert [item.id for item in result.items] == ["c1", "c2"]
        assert "fallback.pets.ids=[c1, c2]" in result.debug
        assert "No id" not in result.prompt
        assert "Blank id" not in result.prompt

    async def test_no_search_text_uses_client_pets(self, make_recommender):
        embedder = FakeEmbedder()
        recommender = make_recommender(FakeLLM(["nonsense"]), embedder)

        result = await recommender.recommend(pets=client_cards(2))

        assert embedder.texts == []
        assert [item.id for item in result.items] == ["c1", "c2"]
        assert "search.source=none" in result.debug
        assert "search.text.length=0" in result.debug

    async def test_no_pets_means_no_model_call(self, make_recommender):
        llm = FakeLLM()
        recommender = make_recommender(llm, FakeEmbedder([]))

        result = await recommender.recommend(messages=[Message(role="user", content="hello")])

        assert result.items == []
        assert result.prompt == ""
        assert result.raw_response == ""
        assert llm.calls == []

    async def test_llm_failure_backfills(self, make_recommender):
        recommender = make_recommender(FakeLLM(error=LLMError("timeout")), FakeEmbedder(unit_vector(1)))

        result = await recommender.recommend(evaluation={"profile": "cat person"})

        assert [(item.id, item.confidence) for item in result.items] == [("1", 0.5), ("2", 0.5), ("3", 0.5)]
        assert result.raw_response == ""

    async def test_embedding_failure_uses_client_pets(self, make_recommender):
        recommender = make_recommender(FakeLLM(["{}"]), FakeEmbedder(error=EmbeddingError("503")))

        result = await recommender.recommend(evaluation={"profile": "dog"}, pets=client_cards(1))

        assert [item.id for item in result.items] == ["c1"]
        assert "embedding.error=503" in result.debug

    async def test_retrieval_failure_uses_client_pets(self, make_recommender, pet_store):
        pet_store.error = RetrievalError("db down")
        recommender = make_recommender(FakeLLM(["{}"]), FakeEmbedder(unit_vector(1)))

        result = await recommender.recommend(evaluation={"profile": "cat"}, pets=client_cards(2))

        assert [item.id for item in result.items] == ["c1", "c2"]
        assert "vector.search.error=db down" in result.debug


def test_vector_preview():
    assert format_vector_preview([]) == "[]"
    assert format_vector_preview([0.5, 1]) == "[0.500000,1.000000]"
    assert format_vector_preview([0.1] * 8) == "[" + ",".join(["0.100000"] * 6) + ",...]"
