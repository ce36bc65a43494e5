#!/usr/bin/env python3
"""
Amount Converter Utility
Centralized conversion between BTC and satoshis, display formatting and
spelled-out number parsing ("two hundred fifty thousand", "one point five").
"""

import re
from decimal import Decimal, ROUND_DOWN
from typing import Dict, Optional, Tuple, Union

SATS_PER_BTC = Decimal("100000000")
MAX_SUPPLY_BTC = Decimal("21000000")
MAX_SUPPLY_SATS = MAX_SUPPLY_BTC * SATS_PER_BTC
BTC_QUANTUM = Decimal("0.00000001")

UNIT_WORDS: Dict[str, int] = {
    "zero": 0, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
    "eleven": 11, "twelve": 12, "thirteen": 13, "fourteen": 14, "fifteen": 15,
    "sixteen": 16, "seventeen": 17, "eighteen": 18, "nineteen": 19,
    # Spanish
    "uno": 1, "una": 1, "dos": 2, "tres": 3, "cuatro": 4, "cinco": 5,
    "seis": 6, "siete": 7, "ocho": 8, "nueve": 9, "diez": 10,
    # French
    "un": 1, "deux": 2, "trois": 3, "quatre": 4, "cinq": 5,
    "sept": 7, "huit": 8, "neuf": 9, "dix": 10,
}

TENS_WORDS: Dict[str, int] = {
    "twenty": 20, "thirty": 30, "forty": 40, "fifty": 50,
    "sixty": 60, "seventy": 70, "eighty": 80, "ninety": 90,
}

SCALE_WORDS: Dict[str, int] = {
    "hundred": 100,
    "thousand": 1_000,
    "million": 1_000_000,
    "billion": 1_000_000_000,
    "mil": 1_000,
    "mille": 1_000,
}

_ALL_WORDS = sorted({**UNIT_WORDS, **TENS_WORDS, **SCALE_WORDS}, key=len, reverse=True)
_WORD = "|".join(_ALL_WORDS)
_DIGIT_WORD = "|".join(sorted(UNIT_WORDS, key=len, reverse=True))

WORD_NUMBER_RE = re.compile(
    rf"\b(?:(?:a|an)\s+(?=(?:{'|'.join(SCALE_WORDS)})\b))?"
    rf"(?:{_WORD})(?:(?:\s+|-)(?:and\s+)?(?:{_WORD}))*"
    rf"(?:\s+point(?:\s+(?:{_DIGIT_WORD}))+)?\b",
    re.IGNORECASE,
)


def words_to_number(phrase: str) -> Optional[Decimal]:
    """Convert a spelled-out number phrase to a Decimal.

    Handles compound forms ("two hundred and fifty thousand"), hyphenated
    tens ("twenty-five"), "a hundred" and a "point" decimal tail.
    Returns None when the phrase contains a word that is not a number word.
    """
    tokens = [t for t in re.split(r"[\s-]+", phrase.lower().strip()) if t and t != "and"]
    if not tokens:
        return None

    total = 0
    current = 0
    decimals = ""
    in_decimals = False
    seen_number = False

    for index, token in enumerate(tokens):
        if token in ("a", "an") and index == 0:
            current = 1
            continue
        if token == "point":
            in_decimals = True
            continue
        if in_decimals:
            if token not in UNIT_WORDS or UNIT_WORDS[token] > 9:
                return None
            decimals += str(UNIT_WORDS[token])
            continue
        if token in UNIT_WORDS:
            current += UNIT_WORDS[token]
        elif token in TENS_WORDS:
            current += TENS_WORDS[token]
        elif token == "hundred":
            current = max(current, 1) * 100
        elif token in SCALE_WORDS:
            total += max(current, 1) * SCALE_WORDS[token]
            current = 0
        else:
            return None
        seen_number = True

    if not seen_number:
        return None
    value = Decimal(total + current)
    if decimals:
        value += Decimal(f"0.{decimals}")
    return value


def find_word_number(text: str) -> Optional[Tuple[Decimal, int, int]]:
    """Locate the first spelled-out number; returns (value, start, end)."""
    for match in WORD_NUMBER_RE.finditer(text):
        value = words_to_number(match.group(0))
        if value is not None:
            return value, match.start(), match.end()
    return None


class AmountConverter:
    """
    Centralized amount conversion utility.
    Keeps the 100,000,000 sats-per-BTC factor in one place.
    """

    SATS_PER_BTC = SATS_PER_BTC

    @classmethod
    def to_sats(cls, amount_btc: Union[Decimal, int, float, str]) -> int:
        """
        Convert a BTC amount to satoshis.

        Args:
            amount_btc: Amount in BTC

        Returns:
            Amount in satoshis, truncated toward zero
        """
        value = Decimal(str(amount_btc)) * cls.SATS_PER_BTC
        return int(value.to_integral_value(rounding=ROUND_DOWN))

    @classmethod
    def to_btc(cls, amount_sats: Union[Decimal, int, str]) -> Decimal:
        """
        Convert satoshis to BTC.

        Args:
            amount_sats: Amount in satoshis

        Returns:
            Amount in BTC, quantized to 8 decimals
        """
        return (Decimal(str(amount_sats)) / cls.SATS_PER_BTC).quantize(BTC_QUANTUM)

    @classmethod
    def quantize_btc(cls, amount: Decimal) -> Decimal:
        return amount.quantize(BTC_QUANTUM, rounding=ROUND_DOWN)

    @classmethod
    def within_supply(cls, amount: Decimal, is_sats: bool) -> bool:
        """True when the amount does not exceed the 21M BTC supply."""
        limit = MAX_SUPPLY_SATS if is_sats else MAX_SUPPLY_BTC
        return amount <= limit

    @classmethod
    def format_btc(cls, amount: Union[Decimal, int, float]) -> str:
        """Format a BTC amount, trimming trailing zeros ("0.015 BTC")."""
        value = Decimal(str(amount)).quantize(BTC_QUANTUM)
        text = format(value, "f").rstrip("0").rstrip(".")
        return f"{text or '0'} BTC"

    @classmethod
    def format_sats(cls, amount_sats: Union[int, Decimal]) -> str:
        return f"{int(amount_sats):,} sats"

    @classmethod
    def format_plain(cls, amount: Decimal) -> str:
        """Plain decimal text without exponent or trailing zeros."""
        text = format(amount.normalize(), "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text or "0"
