"""
pets/users CRUD 与向量检索
"""
import json
from typing import List, Optional, Dict, Any, Sequence

import asyncpg

from pawmatch.core.types import Pet, PetStatus, Species, User
from pawmatch.nlp.exceptions import RetrievalError
from pawmatch.storage.pg import pg_pool, PostgreSQLPool
from pawmatch.utils import vector_codec
from pawmatch.logs import setup_logger

logger = setup_logger(__name__)


PET_COLUMNS = """
    id, name, species, status, breed, age, energy, trait, location,
    raw_description, structured_tags, personality_vector::text AS personality_vector, owner_id
"""

USER_COLUMNS = """
    id, name, email, preference_summary, preference_vector::text AS preference_vector
"""


def _load_json(value: Any) -> Optional[Dict[str, Any]]:
    """jsonb 列在 asyncpg 中默认以字符串返回"""
    if value is None:
        return None
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def row_to_pet(row) -> Pet:
    """数据库行 -> Pet"""
    record = dict(row)
    return Pet(
        id=record["id"],
        name=record["name"],
        species=Species(record["species"]),
        status=PetStatus(record["status"]),
        breed=record.get("breed"),
        age=record.get("age"),
        energy=record.get("energy"),
        trait=record.get("trait"),
        location=record.get("location"),
        raw_description=record.get("raw_description"),
        structured_tags=_load_json(record.get("structured_tags")),
        personality_vector=vector_codec.decode(record.get("personality_vector")),
        owner_id=record.get("owner_id"),
        distance=record.get("distance"),
    )


def row_to_user(row) -> User:
    """数据库行 -> User"""
    record = dict(row)
    return User(
        id=record["id"],
        name=record.get("name") or "",
        email=record.get("email"),
        preference_summary=record.get("preference_summary"),
        preference_vector=vector_codec.decode(record.get("preference_vector")),
    )


class PetDAO:
    """宠物数据访问对象"""

    def __init__(self, pool: PostgreSQLPool = pg_pool):
        self.pool = pool

    async def find_open(self, species: Optional[Species] = None, limit: Optional[int] = None) -> List[Pet]:
        """
        获取可匹配（OPEN）的宠物，按id升序

        Args:
            species: 物种过滤（可选）
            limit: 返回数量上限（可选）
        """
        query = f"""
            SELECT {PET_COLUMNS}
            FROM pets
            WHERE status = 'OPEN'
              AND ($1::text IS NULL OR species = $1)
            ORDER BY id ASC
            LIMIT $2
        """
        rows = await self._fetch(query, species.value if species else None, limit)
        return [row_to_pet(row) for row in rows]

    async def find_by_id(self, pet_id: int) -> Optional[Pet]:
        """按id获取宠物"""
        query = f"SELECT {PET_COLUMNS} FROM pets WHERE id = $1"
        row = await self._fetchrow(query, pet_id)
        return row_to_pet(row) if row else None

    async def save(self, pet: Pet) -> Pet:
        """
        保存宠物（id为空时插入，否则更新）

        Returns:
            带id的宠物
        """
        tags_json = json.dumps(pet.structured_tags, ensure_ascii=False) if pet.structured_tags is not None else None
        vector_text = vector_codec.encode(pet.personality_vector)
        params = (
            pet.name, pet.species.value, pet.status.value, pet.breed, pet.age, pet.energy,
            pet.trait, pet.location, pet.raw_description, tags_json, vector_text, pet.owner_id,
        )

        if pet.id is None:
            query = """
                INSERT INTO pets (name, species, status, breed, age, energy, trait, location,
                                  raw_description, structured_tags, personality_vector, owner_id)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10::jsonb, $11::vector, $12)
                RETURNING id
            """
            row = await self._fetchrow(query, *params)
        else:
            query = """
                UPDATE pets SET name = $1, species = $2, status = $3, breed = $4, age = $5,
                       energy = $6, trait = $7, location = $8, raw_description = $9,
                       structured_tags = $10::jsonb, personality_vector = $11::vector, owner_id = $12
                WHERE id = $13
                RETURNING id
            """
            row = await self._fetchrow(query, *params, pet.id)

        if not row:
            raise RetrievalError(f"保存宠物失败: {pet.name}")
        return pet.model_copy(update={"id": row["id"]})

    async def hybrid_search(
        self,
        species: Optional[Species],
        query_vector: Sequence[float],
        limit: int
    ) -> List[Pet]:
        """
        混合检索：属性过滤 + 向量距离排序

        Args:
            species: 物种过滤（None表示不过滤）
            query_vector: 查询向量（不能为空）
            limit: 返回数量上限

        Returns:
            按距离升序排列的OPEN宠物
        """
        vector_text = vector_codec.encode(query_vector)
        if vector_text is None:
            raise ValueError("hybrid_search 需要非空查询向量")

        op = self.pool.distance_operator
        query = f"""
            SELECT {PET_COLUMNS},
                   (personality_vector {op} $1::vector) AS distance
            FROM pets
            WHERE ($2::text IS NULL OR species = $2)
              AND status = 'OPEN'
            ORDER BY personality_vector {op} $1::vector ASC NULLS LAST, id ASC
            LIMIT $3
        """
        rows = await self._fetch(query, vector_text, species.value if species else None, limit)
        return [row_to_pet(row) for row in rows]

    async def _fetch(self, query: str, *args) -> List[asyncpg.Record]:
        try:
            return await self.pool.fetch(query, *args)
        except (asyncpg.PostgresError, RuntimeError, OSError) as e:
            logger.error(f"查询宠物失败: {e}")
            raise RetrievalError(f"查询宠物失败: {e}", cause=e) from e

    async def _fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        try:
            return await self.pool.fetchrow(query, *args)
        except (asyncpg.PostgresError, RuntimeError, OSError) as e:
            logger.error(f"查询宠物失败: {e}")
            raise RetrievalError(f"查询宠物失败: {e}", cause=e) from e


class UserDAO:
    """用户数据访问对象"""

    def __init__(self, pool: PostgreSQLPool = pg_pool):
        self.pool = pool

    async def find_by_id(self, user_id: int) -> Optional[User]:
        """按id获取用户"""
        query = f"SELECT {USER_COLUMNS} FROM users WHERE id = $1"
        row = await self._fetchrow(query, user_id)
        return row_to_user(row) if row else None

    async def save(self, user: User) -> User:
        """保存用户（按id插入或更新）"""
        query = """
            INSERT INTO users (id, name, email, preference_summary, preference_vector)
            VALUES ($1, $2, $3, $4, $5::vector)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                email = EXCLUDED.email,
                preference_summary = EXCLUDED.preference_summary,
                preference_vector = EXCLUDED.preference_vector
            RETURNING id
        """
        await self._fetchrow(
            query,
            user.id,
            user.name,
            user.email,
            user.preference_summary,
            vector_codec.encode(user.preference_vector),
        )
        return user

    async def save_profile(self, user_id: int, summary: str, vector: Sequence[float]) -> None:
        """持久化偏好画像（摘要 + 向量）"""
        query = """
            UPDATE users
            SET preference_summary = $2, preference_vector = $3::vector
            WHERE id = $1
            RETURNING id
        """
        row = await self._fetchrow(query, user_id, summary, vector_codec.encode(vector))
        if not row:
            raise RetrievalError(f"更新用户画像失败: 用户 {user_id} 不存在")

    async def _fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        try:
            return await self.pool.fetchrow(query, *args)
        except (asyncpg.PostgresError, RuntimeError, OSError) as e:
            logger.error(f"查询用户失败: {e}")
            raise RetrievalError(f"查询用户失败: {e}", cause=e) from e


# 全局DAO实例
pet_dao = PetDAO()
user_dao = UserDAO()
