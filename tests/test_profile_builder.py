"""
偏好画像构建测试
"""
import pytest

from pawmatch.core.types import User
from pawmatch.nlp.exceptions import EmbeddingError, LLMError
from pawmatch.services.profile_builder import ProfileBuilder
from tests.conftest import FakeEmbedder, FakeLLM, unit_vector


class TestProfileBuilder:
    """ProfileBuilder.refresh"""

    async def test_summarize_embed_persist(self, user_store):
        llm = FakeLLM(["Prefers calm cats, lives in a small flat."])
        embedder = FakeEmbedder(unit_vector(4))
        builder = ProfileBuilder(llm=llm, embedder=embedder, users=user_store)
        user = await user_store.find_by_id(1)

        update = await builder.refresh(user, "I live in a small flat")

        _, user_prompt = llm.calls[0]
        assert "CurrentPreferenceSummary: Likes quiet evenings." in user_prompt
        assert "NewUserMessage: I live in a small flat" in user_prompt
        assert embedder.texts == ["Prefers calm cats, lives in a small flat."]
        assert update.summary == "Prefers calm cats, lives in a small flat."
        assert update.embedding == unit_vector(4)
        assert user.preference_summary == update.summary
        assert user_store.users[1].preference_vector == unit_vector(4)

    async def test_first_message_without_summary(self, user_store):
        user_store.users[2] = User(id=2, name="New")
        llm = FakeLLM(["Summary."])
        builder = ProfileBuilder(llm=llm, embedder=FakeEmbedder(), users=user_store)

        await builder.refresh(await user_store.find_by_id(2), "hello")

        assert "CurrentPreferenceSummary: \n" in llm.calls[0][1]

    async def test_empty_embedding_still_persisted(self, user_store):
        builder = ProfileBuilder(llm=FakeLLM(["S."]), embedder=FakeEmbedder([]), users=user_store)

        update = await builder.refresh(await user_store.find_by_id(1), "hi")

        assert update.embedding == []
        assert user_store.saved_profiles == [(1, "S.", [])]

    async def test_wrong_dimension_rejected(self, user_store):
        builder = ProfileBuilder(llm=FakeLLM(["S."]), embedder=FakeEmbedder([0.1, 0.2]), users=user_store)

        with pytest.raises(EmbeddingError):
            await builder.refresh(await user_store.find_by_id(1), "hi")
        assert user_store.saved_profiles == []

    async def test_llm_failure_leaves_profile_untouched(self, user_store):
        embedder = FakeEmbedder()
        builder = ProfileBuilder(llm=FakeLLM(error=LLMError("down")), embedder=embedder, users=user_store)

        with pytest.raises(LLMError):
            await builder.refresh(await user_store.find_by_id(1), "hi")
        assert embedder.texts == []
        assert user_store.saved_profiles == []
