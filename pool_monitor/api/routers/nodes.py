"""
单节点信息 API
"""

from fastapi import APIRouter, Depends

from ...aggregation import AggregationService
from ...models import NodesInfoData, NodesInfoRequest, NodesInfoResponse
from ..dependencies import get_aggregation

router = APIRouter(tags=["nodes"])


@router.post("/nodes_info", response_model=NodesInfoResponse)
async def post_nodes_info(
    req: NodesInfoRequest,
    service: AggregationService = Depends(get_aggregation)
):
    """
    分页返回节点信息

    - registrations：当前轮次注册（实时查链）
    - next_registrations：下一轮已开放时的注册（实时查链）
    - atx：当前纪元激活（读缓存，缺失时 epoch = 0）
    """
    nodes = await service.nodes_info(req.limit, req.offset)
    return NodesInfoResponse(data=NodesInfoData(data=nodes))
