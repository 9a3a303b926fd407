"""
FastAPI 入口
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pawmatch.config import settings
from pawmatch.logs import setup_logger, metrics as metrics_collector
from pawmatch.nlp.exceptions import AgentError, NotFoundError, UpstreamError, ValidationError
from pawmatch.nlp.llm_api import llm_api
from pawmatch.storage.pg import pg_pool
from pawmatch.api_routes import router

logger = setup_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 启动时初始化
    logger.info("🚀 启动应用...")

    if settings.PG_ENABLED:
        await pg_pool.initialize()
        if pg_pool.pool:
            logger.info(f"PostgreSQL已初始化（向量度量: {settings.VECTOR_METRIC}）")
        else:
            logger.warning("PostgreSQL未初始化，匹配、推荐与宠物目录功能将不可用")
            logger.warning("请检查PostgreSQL配置和服务状态")
    if settings.AI_OWNER_ID is None:
        logger.info("AI_OWNER_ID未配置，入库宠物将不设置发布者")

    yield

    # 关闭时清理
    logger.info("🛑 关闭应用...")
    await llm_api.close()
    if pg_pool.pool:  # 如果已初始化，则关闭
        await pg_pool.close()


# 创建FastAPI应用
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan
)

# 添加CORS中间件
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 注册API路由
app.include_router(router, prefix="/api")


# 异常 -> HTTP状态码
def error_status(exc: AgentError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, UpstreamError):
        return 502
    return 500


@app.exception_handler(AgentError)
async def agent_error_handler(request: Request, exc: AgentError):
    status = error_status(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} 失败: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} 被拒绝: {exc.message}")
    return JSONResponse(status_code=status, content={"detail": exc.message})


# 健康检查
@app.get("/")
async def root():
    return {
        "message": f"{settings.APP_NAME} 后端服务运行中",
        "status": "ok",
        "version": settings.APP_VERSION
    }


@app.get("/health")
async def health():
    """健康检查端点"""
    return {
        "status": "healthy",
        "database": pg_pool.pool is not None,
        "vector_metric": settings.VECTOR_METRIC,
        "interview_mode": settings.INTERVIEW_MODE
    }


@app.get("/metrics")
async def metrics():
    """指标端点"""
    return metrics_collector.get_all()


def run():
    """命令行启动"""
    import uvicorn
    uvicorn.run(
        "pawmatch.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )


if __name__ == "__main__":
    run()
