"""
候选检索（混合检索：物种过滤 + 向量距离）
"""
from typing import List, Optional, Sequence

from pawmatch.core.types import Pet, Species
from pawmatch.storage.dao import PetDAO, pet_dao
from pawmatch.logs import setup_logger

logger = setup_logger(__name__)


class CandidateRetriever:
    """候选检索器"""

    def __init__(self, dao: PetDAO = pet_dao):
        self.dao = dao

    async def search(
        self,
        species: Optional[Species],
        query_vector: Sequence[float],
        limit: int
    ) -> List[Pet]:
        """
        向量检索OPEN宠物

        Args:
            species: 物种过滤（None表示猫狗均可）
            query_vector: 查询向量（调用方保证非空）
            limit: 返回数量上限

        Returns:
            距离升序的候选列表，长度不超过limit
        """
        if limit <= 0:
            return []
        candidates = await self.dao.hybrid_search(species, query_vector, limit)
        # 存储层应已保证这两条，这里只做截断防御
        candidates = [pet for pet in candidates if species is None or pet.species == species][:limit]
        logger.info(
            f"混合检索完成: species={species.value if species else 'none'}, "
            f"limit={limit}, count={len(candidates)}, ids={[pet.id for pet in candidates]}"
        )
        return candidates

    async def list_open(self, species: Optional[Species], limit: int) -> List[Pet]:
        """无向量时的兜底路径：按id顺序取OPEN宠物"""
        if limit <= 0:
            return []
        candidates = await self.dao.find_open(species, limit)
        logger.info(f"无向量兜底检索: species={species.value if species else 'none'}, count={len(candidates)}")
        return candidates[:limit]


# 全局实例
candidate_retriever = CandidateRetriever()
