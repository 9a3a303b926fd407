"""
宠物入库：结构化标签 -> 性格画像 -> embedding -> 保存为OPEN
"""
import json
from typing import Optional

from pawmatch.config import settings
from pawmatch.core.types import Pet, PetStatus
from pawmatch.nlp.exceptions import EmbeddingError, ValidationError
from pawmatch.nlp.llm_api import LLMAPI, llm_api
from pawmatch.nlp.normalizer import parse_json_object_or_raw
from pawmatch.nlp.prompts import PromptManager, prompt_manager
from pawmatch.nlp.species import parse_species
from pawmatch.services.embed_service import EmbeddingService, embedding_service
from pawmatch.storage.dao import PetDAO, pet_dao
from pawmatch.utils import vector_codec
from pawmatch.logs import setup_logger, metrics

logger = setup_logger(__name__)

_DISPLAY_FIELDS = ("breed", "age", "energy", "trait", "location")


class PetIngestionService:
    """宠物入库服务"""

    def __init__(
        self,
        llm: LLMAPI = llm_api,
        embedder: EmbeddingService = embedding_service,
        pets: PetDAO = pet_dao,
        prompts: PromptManager = prompt_manager
    ):
        self.llm = llm
        self.embedder = embedder
        self.pets = pets
        self.prompts = prompts

    async def process_new_pet(
        self,
        name: Optional[str],
        description: Optional[str],
        species: Optional[str],
        owner_id: Optional[int] = None,
        **attributes
    ) -> Pet:
        """
        处理新宠物并入库

        Args:
            name: 名字
            description: 原始描述
            species: CAT / DOG（大小写不敏感）
            owner_id: 发布者id（默认使用配置的AI发布者）
            **attributes: breed/age/energy/trait/location 等展示字段

        Returns:
            已保存的宠物（状态为OPEN）

        Raises:
            ValidationError: 名字/描述为空或物种非法（在任何外部调用之前）
            UpstreamError: LLM/Embedding/存储失败
        """
        name = (name or "").strip()
        description = (description or "").strip()
        if not name:
            raise ValidationError("Pet name is required.")
        if not description:
            raise ValidationError("Pet description is required.")
        try:
            parsed_species = parse_species(species)
        except ValueError as e:
            raise ValidationError(str(e), cause=e) from e

        tags_text = await self.llm.complete(
            self.prompts.render("pet_tags_system"),
            self.prompts.render(
                "pet_tags_user",
                name=name,
                species=parsed_species.value,
                description=description,
            ),
        )
        tags = parse_json_object_or_raw(tags_text)

        profile_text = await self.llm.complete(
            self.prompts.render("pet_profile_system"),
            self.prompts.render(
                "pet_profile_user",
                name=name,
                species=parsed_species.value,
                description=description,
                tags=json.dumps(tags, ensure_ascii=False),
            ),
        )

        embedding = await self.embedder.embed(profile_text)
        try:
            vector_codec.check_dimension(embedding, settings.PG_VECTOR_DIM)
        except ValueError as e:
            raise EmbeddingError(str(e), cause=e) from e

        pet = Pet(
            name=name,
            species=parsed_species,
            status=PetStatus.OPEN,
            raw_description=description,
            structured_tags=tags,
            personality_vector=embedding,
            owner_id=owner_id if owner_id is not None else settings.AI_OWNER_ID,
            **{key: value for key, value in attributes.items() if key in _DISPLAY_FIELDS},
        )
        saved = await self.pets.save(pet)
        metrics.increment("pets_ingested")
        logger.info(
            f"宠物入库完成: id={saved.id}, name={saved.name}, species={saved.species.value}, "
            f"vector_dim={len(embedding)}"
        )
        return saved


# 全局实例
pet_ingestion_service = PetIngestionService()
