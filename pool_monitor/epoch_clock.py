"""
纪元时钟

向链节点查询当前 epoch / layer，并计算当前与下一轮次窗口。
"""

import logging
from typing import Any, Dict, Optional

import httpx

from .errors import TransientIOError
from .models import WindowView

logger = logging.getLogger(__name__)

LAYERS_PER_EPOCH = 4032
ROUND_OPEN_OFFSET = 2880


def compute_window(
    epoch: int,
    layer: int,
    layers_per_epoch: int = LAYERS_PER_EPOCH,
    round_open_offset: int = ROUND_OPEN_OFFSET
) -> WindowView:
    """
    计算轮次窗口（纯函数）

    当前轮次与当前激活纪元均为 epoch - 1。
    链上会在 epoch 翻转前提前开放下一轮 PoET 注册：一旦
    layer >= epoch * layers_per_epoch + round_open_offset，
    就需要同时跟踪 next_round = next_epoch = epoch。
    """
    crossed = layer >= epoch * layers_per_epoch + round_open_offset
    return WindowView(
        epoch=epoch,
        layer=layer,
        current_round=epoch - 1,
        current_epoch_for_activation=epoch - 1,
        next_round=epoch if crossed else None,
        next_epoch=epoch if crossed else None,
    )


def normalize_endpoint(endpoint: str) -> str:
    """host:port → http://host:port"""
    endpoint = endpoint.rstrip("/")
    if "://" not in endpoint:
        endpoint = f"http://{endpoint}"
    return endpoint


class EpochClock:
    """链节点时钟"""

    def __init__(
        self,
        endpoint: str,
        timeout: float = 5.0,
        layers_per_epoch: int = LAYERS_PER_EPOCH,
        round_open_offset: int = ROUND_OPEN_OFFSET,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = normalize_endpoint(endpoint)
        self.timeout = timeout
        self.layers_per_epoch = layers_per_epoch
        self.round_open_offset = round_open_offset
        self._transport = transport

    async def _call(self, path: str) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url)
                response.raise_for_status()
                return response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransientIOError(f"RPC {path} failed: {e}") from e

    @staticmethod
    def _extract_number(payload: Any, key: str) -> int:
        try:
            return int(payload[key]["number"])
        except (KeyError, TypeError, ValueError) as e:
            raise TransientIOError(f"malformed RPC response, missing {key}.number: {payload!r}") from e

    async def current_epoch(self) -> int:
        """POST /v1/mesh/currentepoch → {"epochnum": {"number": N}}"""
        payload = await self._call("/v1/mesh/currentepoch")
        return self._extract_number(payload, "epochnum")

    async def current_layer(self) -> int:
        """POST /v1/mesh/currentlayer → {"layernum": {"number": N}}"""
        payload = await self._call("/v1/mesh/currentlayer")
        return self._extract_number(payload, "layernum")

    async def window(self) -> WindowView:
        """读取 epoch + layer 并计算窗口"""
        epoch = await self.current_epoch()
        layer = await self.current_layer()
        view = compute_window(epoch, layer, self.layers_per_epoch, self.round_open_offset)
        logger.debug(
            f"Window: epoch={epoch} layer={layer} current_round={view.current_round} "
            f"next_round={view.next_round}"
        )
        return view
