"""
FastAPI 应用配置

配置 CORS、请求超时、路由注册。
"""

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..context import AppContext
from .routers import nodes, overview, sync

logger = logging.getLogger(__name__)


def create_app(ctx: AppContext) -> FastAPI:
    """
    创建 FastAPI 应用实例

    配置：
    - 应用上下文（app.state.ctx）
    - CORS 中间件
    - 请求超时（超时返回 408）
    - API 路由
    """
    config = ctx.config

    app = FastAPI(
        title="Pool Monitor",
        description="矿池存储承诺 / PoET 注册 / ATX 激活监控",
        version=__version__,
    )
    app.state.ctx = ctx

    request_timeout = config.api.request_timeout

    @app.middleware("http")
    async def enforce_request_timeout(request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=request_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Request {request.method} {request.url.path} timed out after {request_timeout}s")
            return JSONResponse(status_code=408, content={"code": 408, "data": None})

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(overview.router)
    app.include_router(nodes.router)
    app.include_router(sync.router)

    return app
