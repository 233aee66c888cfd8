"""
对账状态 API
"""

from fastapi import APIRouter, Depends

from ...models import SyncStatus, SyncStatusResponse
from ...synchronizer import Synchronizer
from ..dependencies import get_synchronizer

router = APIRouter(tags=["sync"])


@router.get("/sync/status", response_model=SyncStatusResponse)
async def get_sync_status(synchronizer: Synchronizer = Depends(get_synchronizer)):
    """当前对账状态与最近一轮报告"""
    return SyncStatusResponse(
        data=SyncStatus(state=synchronizer.state.value, last_report=synchronizer.last_report)
    )


@router.get("/health")
async def health():
    return {"status": "ok"}
