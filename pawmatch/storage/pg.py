"""
PostgreSQL/pgvector 连接与DDL
"""
from typing import Optional, List, Any

import asyncpg

from pawmatch.config import settings
from pawmatch.logs import setup_logger

logger = setup_logger(__name__)


# 距离度量 -> (pgvector运算符, HNSW索引ops类)
# 查询运算符和索引ops类必须来自同一行
VECTOR_METRICS = {
    "cosine": ("<=>", "vector_cosine_ops"),
    "inner_product": ("<#>", "vector_ip_ops"),
    "l2": ("<->", "vector_l2_ops"),
}


def resolve_metric(name: str) -> tuple:
    """解析距离度量配置"""
    try:
        return VECTOR_METRICS[name.lower()]
    except KeyError:
        raise ValueError(
            f"不支持的向量度量: {name}（可选: {', '.join(VECTOR_METRICS)}）"
        ) from None


class PostgreSQLPool:
    """PostgreSQL连接池"""

    def __init__(self):
        self.pool: Optional[asyncpg.Pool] = None
        self.distance_operator, self.index_ops = resolve_metric(settings.VECTOR_METRIC)

    async def initialize(self):
        """初始化连接池"""
        if not settings.PG_ENABLED:
            logger.info("PostgreSQL未启用，跳过初始化")
            return

        try:
            logger.info(f"正在连接PostgreSQL: {settings.PG_HOST}:{settings.PG_PORT}/{settings.PG_DB}")
            self.pool = await asyncpg.create_pool(
                host=settings.PG_HOST,
                port=settings.PG_PORT,
                database=settings.PG_DB,
                user=settings.PG_USER,
                password=settings.PG_PASSWORD,
                min_size=2,
                max_size=10,
                timeout=10,
            )
            logger.info("PostgreSQL连接池初始化成功")
            await self.create_tables()
        except asyncpg.exceptions.InvalidPasswordError:
            logger.error("PostgreSQL认证失败: 用户名或密码错误")
            self.pool = None
        except asyncpg.exceptions.InvalidCatalogNameError:
            logger.error(f"PostgreSQL数据库不存在: {settings.PG_DB}")
            self.pool = None
        except (ConnectionRefusedError, OSError) as e:
            logger.error(f"PostgreSQL连接失败: 无法连接到 {settings.PG_HOST}:{settings.PG_PORT} ({e})")
            self.pool = None

    async def close(self):
        """关闭连接池"""
        if self.pool:
            await self.pool.close()
            logger.info("PostgreSQL连接池已关闭")

    async def create_tables(self):
        """创建数据库表结构（pgvector为必需扩展）"""
        if not self.pool:
            return

        async with self.pool.acquire() as conn:
            await conn.execute("CREATE EXTENSION IF NOT EXISTS vector")

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS users (
                    id BIGSERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    email VARCHAR(255) UNIQUE,
                    preference_summary TEXT,
                    preference_vector vector({settings.PG_VECTOR_DIM}),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS pets (
                    id BIGSERIAL PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    species VARCHAR(16) NOT NULL,
                    status VARCHAR(16) NOT NULL DEFAULT 'OPEN',
                    breed VARCHAR(255),
                    age VARCHAR(64),
                    energy VARCHAR(255),
                    trait TEXT,
                    location VARCHAR(255),
                    raw_description TEXT,
                    structured_tags JSONB,
                    personality_vector vector({settings.PG_VECTOR_DIM}),
                    owner_id BIGINT REFERENCES users(id),
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE INDEX IF NOT EXISTS pets_status_species_idx
                ON pets(status, species)
            """)

            try:
                await conn.execute(f"""
                    CREATE INDEX IF NOT EXISTS pets_personality_vector_idx
                    ON pets USING hnsw (personality_vector {self.index_ops})
                """)
            except asyncpg.PostgresError as e:
                logger.warning(f"创建向量索引失败: {e}")

            logger.info(f"数据库表结构创建完成（向量度量: {settings.VECTOR_METRIC}）")

    async def execute(self, query: str, *args) -> Any:
        """执行SQL语句"""
        if not self.pool:
            raise RuntimeError("PostgreSQL连接池未初始化")

        async with self.pool.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args) -> List[asyncpg.Record]:
        """获取查询结果"""
        if not self.pool:
            raise RuntimeError("PostgreSQL连接池未初始化")

        async with self.pool.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args) -> Optional[asyncpg.Record]:
        """获取单行查询结果"""
        if not self.pool:
            raise RuntimeError("PostgreSQL连接池未初始化")

        async with self.pool.acquire() as conn:
            return await conn.fetchrow(query, *args)


# 全局连接池实例
pg_pool = PostgreSQLPool()
