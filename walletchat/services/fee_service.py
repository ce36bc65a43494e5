"""Fee estimate service backed by mempool.space recommended fees."""

import time
from typing import Callable, Optional, Tuple

import httpx

from walletchat.schemas.core import FeeEstimates
from walletchat.services.http_service import HTTPService
from walletchat.utils.config import settings
from walletchat.utils.errors import FeeUnavailableError
from walletchat.utils.logger import get_logger

logger = get_logger("fee_service")


class FeeService(HTTPService):
    """Fetches slow/medium/fast fee rates; never fails, falls back to typical rates."""

    error_class = FeeUnavailableError
    service_name = "fee"

    def __init__(self, url: Optional[str] = None, cache_seconds: Optional[int] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, max_retries: Optional[int] = None,
                 backoff: float = 1.0, clock: Callable[[], float] = time.monotonic):
        super().__init__(transport=transport, max_retries=max_retries, backoff=backoff)
        self.url = url or settings.fee_api_url
        self.cache_seconds = cache_seconds if cache_seconds is not None else settings.fee_cache_seconds
        self.clock = clock
        self._cached: Optional[Tuple[FeeEstimates, float]] = None

    @staticmethod
    def fallback() -> FeeEstimates:
        return FeeEstimates(**settings.fallback_fee_rates, is_fallback=True)

    async def get_estimates(self) -> FeeEstimates:
        """Current fee rates in sat/vB, or the fallback set when unavailable."""
        if self._cached and self.clock() - self._cached[1] < self.cache_seconds:
            return self._cached[0]

        try:
            data = await self._make_request("GET", self.url)
            estimates = FeeEstimates(
                fast=max(int(data["fastestFee"]), 1),
                medium=max(int(data["halfHourFee"]), 1),
                slow=max(int(data["hourFee"]), 1),
            )
        except FeeUnavailableError as e:
            logger.error(f"Fee estimates unavailable, using fallback rates: {e}")
            return self.fallback()
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Unexpected fee payload, using fallback rates: {e}")
            return self.fallback()

        self._cached = (estimates, self.clock())
        logger.info(f"Fee estimates: fast {estimates.fast}, medium {estimates.medium}, slow {estimates.slow}")
        return estimates
