"""
数据模型定义

包括：
- 领域模型（承诺、注册、激活、纪元窗口）
- Pydantic 响应模型（用于 API）
- 对账结果报告
"""

from typing import List, Optional

from pydantic import BaseModel, Field, computed_field


# =============================================================================
# 领域模型
# =============================================================================

class StorageCommitment(BaseModel):
    """节点初始化时声明的存储承诺（initial_post）"""
    node_id: str
    allocated_units: int


class RoundRegistration(BaseModel):
    """PoET 轮次注册记录，约定 round_id = epoch - 1"""
    node_id: str
    round_id: str
    deadline: int = 0
    address: str = ""  # PoET 服务地址（hex）


class ActivationRecord(BaseModel):
    """链上 ATX 激活记录；effective_units 可能与 allocated_units 不同"""
    node_id: str = ""
    epoch: int = 0
    activation_id: str = ""
    effective_units: int = 0
    reward_address: str = ""

    @classmethod
    def empty(cls, node_id: str = "") -> "ActivationRecord":
        """缺失激活时的默认记录（epoch = 0 哨兵值）"""
        return cls(node_id=node_id)

    @property
    def is_empty(self) -> bool:
        return self.epoch == 0


class WindowView(BaseModel):
    """当前 / 下一轮次与纪元窗口（派生数据，不落库）"""
    epoch: int
    layer: int
    current_round: int
    current_epoch_for_activation: int
    next_round: Optional[int] = None
    next_epoch: Optional[int] = None

    @computed_field
    @property
    def boundary_crossed(self) -> bool:
        return self.next_round is not None


# =============================================================================
# Pydantic 响应模型（用于 API）
# =============================================================================

class CountItem(BaseModel):
    """数量 + 单元数"""
    count: int = 0
    num_units: int = 0


class CurrentNextItem(BaseModel):
    """当前轮次 / 下一轮次"""
    current: CountItem = Field(default_factory=CountItem)
    next: CountItem = Field(default_factory=CountItem)


class Overview(BaseModel):
    """总览（GET /overview）"""
    init_posted: CountItem = Field(default_factory=CountItem)
    registered: CurrentNextItem = Field(default_factory=CurrentNextItem)
    activated: CurrentNextItem = Field(default_factory=CurrentNextItem)

    # 旧版前端使用的拼写，保持兼容
    @computed_field
    @property
    def registerd(self) -> CurrentNextItem:
        return self.registered

    @computed_field
    @property
    def actived(self) -> CurrentNextItem:
        return self.activated


class NodeInfo(BaseModel):
    """单节点信息（POST /nodes_info）"""
    id: str
    num_units: int
    registrations: List[RoundRegistration] = Field(default_factory=list)
    next_registrations: List[RoundRegistration] = Field(default_factory=list)
    atx: ActivationRecord = Field(default_factory=ActivationRecord)


class NodesInfoRequest(BaseModel):
    """分页请求"""
    limit: int = Field(20, ge=1, le=1000)
    offset: int = Field(0, ge=0)


class OverviewResponse(BaseModel):
    code: int = 200
    data: Overview


class NodesInfoData(BaseModel):
    data: List[NodeInfo] = Field(default_factory=list)


class NodesInfoResponse(BaseModel):
    code: int = 200
    data: NodesInfoData


# =============================================================================
# 对账结果
# =============================================================================

class PassReport(BaseModel):
    """单轮对账统计"""
    started_at: str
    finished_at: Optional[str] = None
    window: Optional[WindowView] = None
    total_keys: int = 0
    keys_processed: int = 0
    registrations_upserted: int = 0
    activations_upserted: int = 0
    failed_keys: int = 0
    aborted: Optional[str] = None  # 中止原因，None 表示完整跑完


class SyncStatus(BaseModel):
    state: str
    last_report: Optional[PassReport] = None


class SyncStatusResponse(BaseModel):
    code: int = 200
    data: SyncStatus
