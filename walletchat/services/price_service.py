"""Spot price service backed by the Coinbase public price API."""

import time
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, Optional, Tuple

import httpx

from walletchat.services.http_service import HTTPService
from walletchat.utils.amount_converter import AmountConverter
from walletchat.utils.config import settings
from walletchat.utils.errors import PriceUnavailableError
from walletchat.utils.logger import get_logger

logger = get_logger("price_service")


class PriceService(HTTPService):
    """Fetches and caches the BTC spot price per fiat currency."""

    error_class = PriceUnavailableError
    service_name = "price"

    def __init__(self, url_template: Optional[str] = None, cache_seconds: Optional[int] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, max_retries: Optional[int] = None,
                 backoff: float = 1.0, clock: Callable[[], float] = time.monotonic):
        super().__init__(transport=transport, max_retries=max_retries, backoff=backoff)
        self.url_template = url_template or settings.price_api_url
        self.cache_seconds = cache_seconds if cache_seconds is not None else settings.price_cache_seconds
        self.clock = clock
        self._cache: Dict[str, Tuple[Decimal, float]] = {}

    async def get_price(self, currency: Optional[str] = None) -> Decimal:
        """
        Get the price of 1 BTC in ``currency``.

        Raises:
            PriceUnavailableError: when the API cannot be reached or returns garbage
        """
        code = (currency or settings.default_fiat_currency).upper()
        cached = self._cache.get(code)
        if cached and self.clock() - cached[1] < self.cache_seconds:
            return cached[0]

        data = await self._make_request("GET", self.url_template.format(currency=code))
        try:
            price = Decimal(str(data["data"]["amount"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            logger.error(f"Unexpected price payload for {code}: {e}")
            raise PriceUnavailableError(f"Unexpected price payload for {code}")
        if price <= 0:
            raise PriceUnavailableError(f"Invalid price for {code}: {price}")

        self._cache[code] = (price, self.clock())
        logger.info(f"BTC price: {price} {code}")
        return price

    async def convert_to_btc(self, amount: Decimal, currency: str) -> Decimal:
        """Fiat amount to BTC, truncated to whole satoshis."""
        price = await self.get_price(currency)
        return AmountConverter.quantize_btc(amount / price)

    async def convert_from_btc(self, amount_btc: Decimal, currency: str) -> Decimal:
        price = await self.get_price(currency)
        return (amount_btc * price).quantize(Decimal("0.01"))

    def clear_cache(self):
        self._cache.clear()
