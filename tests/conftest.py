"""Shared fixtures for the WalletChat tests."""

import os

# Keep test runs from writing log files
os.environ.setdefault("WALLETCHAT_NO_FILE_LOGS", "1")

import random
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from walletchat.schemas.core import FeeEstimates, TransactionSummary, WalletSnapshot
from walletchat.services.price_service import PriceService
from walletchat.utils.errors import PriceUnavailableError

MAINNET_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"
OTHER_MAINNET_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
LEGACY_ADDRESS = "1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2"
TESTNET_ADDRESS = "tb1qw508d6qejxtdg4y5r3zarvary0c5xw7kxpjzsx"


class FixedPriceService(PriceService):
    """Price service answering from a table instead of the network."""

    def __init__(self, prices=None):
        super().__init__()
        self.prices = prices or {"USD": Decimal("50000"), "EUR": Decimal("40000")}

    async def get_price(self, currency=None):
        code = (currency or "USD").upper()
        if code not in self.prices:
            raise PriceUnavailableError(f"No price for {code}")
        return self.prices[code]


@pytest.fixture
def rng():
    return random.Random(7)


@pytest.fixture
def transactions():
    now = datetime(2026, 10, 1, 12, 0, 0)
    return [
        TransactionSummary(txid="aa" * 32, amount=Decimal("0.002"), direction="sent",
                           address=MAINNET_ADDRESS, confirmations=0, timestamp=now),
        TransactionSummary(txid="bb" * 32, amount=Decimal("0.01"), direction="received",
                           address=OTHER_MAINNET_ADDRESS, confirmations=12, timestamp=now - timedelta(days=1)),
        TransactionSummary(txid="cc" * 32, amount=Decimal("0.0005"), direction="sent",
                           address=LEGACY_ADDRESS, confirmations=40, timestamp=now - timedelta(days=3)),
    ]


@pytest.fixture
def snapshot(transactions):
    return WalletSnapshot(
        balance=Decimal("0.05"),
        utxo_count=4,
        fee_estimates=FeeEstimates(slow=5, medium=10, fast=20),
        receive_address=OTHER_MAINNET_ADDRESS,
        recent_transactions=transactions,
        network="mainnet",
        block_height=865000,
    )
