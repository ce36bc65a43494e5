"""Signing/broadcast collaborator interface and an in-memory implementation."""

import hashlib
from typing import List, Optional

from walletchat.schemas.core import BroadcastRequest, BroadcastResult
from walletchat.utils.errors import BroadcastError
from walletchat.utils.logger import get_logger

logger = get_logger("broadcast_service")


class BroadcastService:
    """Signs and broadcasts a finalized send.

    Implementations raise ``BroadcastError`` with a ``kind`` of
    insufficient_funds, signing_failed, network or invalid_address.
    """

    async def broadcast(self, request: BroadcastRequest) -> BroadcastResult:
        raise NotImplementedError


class RecordingBroadcastService(BroadcastService):
    """Records every request and returns a deterministic txid.

    Used by the CLI demo and the tests. Set ``fail_with`` to make the next
    broadcasts fail with that error.
    """

    def __init__(self, fail_with: Optional[BroadcastError] = None):
        self.fail_with = fail_with
        self.requests: List[BroadcastRequest] = []

    async def broadcast(self, request: BroadcastRequest) -> BroadcastResult:
        self.requests.append(request)
        if self.fail_with is not None:
            logger.warning(f"Broadcast failing as configured: {self.fail_with.kind}")
            raise self.fail_with

        seed = f"{request.address}:{request.amount_sats}:{request.fee_rate}:{len(self.requests)}"
        txid = hashlib.sha256(seed.encode()).hexdigest()
        logger.info(f"Broadcast {request.amount_sats} sats to {request.address[:8]}... as {txid[:12]}")
        return BroadcastResult(txid=txid)

    @property
    def call_count(self) -> int:
        return len(self.requests)
