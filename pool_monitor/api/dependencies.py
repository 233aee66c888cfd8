"""
依赖注入模块

提供 FastAPI 依赖项，组件统一从 app.state.ctx 取出。
"""

from fastapi import Depends, Request

from ..aggregation import AggregationService
from ..context import AppContext
from ..synchronizer import Synchronizer


def get_context(request: Request) -> AppContext:
    """获取应用上下文"""
    return request.app.state.ctx


async def get_aggregation(ctx: AppContext = Depends(get_context)) -> AggregationService:
    return ctx.aggregation


async def get_synchronizer(ctx: AppContext = Depends(get_context)) -> Synchronizer:
    return ctx.synchronizer
