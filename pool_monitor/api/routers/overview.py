"""
总览 API
"""

from fastapi import APIRouter, Depends

from ...aggregation import AggregationService
from ...models import OverviewResponse
from ..dependencies import get_aggregation

router = APIRouter(tags=["overview"])


@router.get("/overview", response_model=OverviewResponse)
async def get_overview(service: AggregationService = Depends(get_aggregation)):
    """
    矿池总览

    存储读失败或链节点不可用时相关字段为 0，仍返回 200。
    """
    overview = await service.overview()
    return OverviewResponse(data=overview)
