#!/usr/bin/env python3
"""
Currency Parser Utility
Detects fiat amounts in natural language: symbol prefix ("$50", "HK$500"),
symbol suffix ("100€"), ISO code suffix ("50 USD"), currency name suffix
("50 bucks", "100 euros", "200 ريال") and contextual phrases ("in EUR").
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel

from .text_normalizer import normalize_text

# Longer symbols first so that "HK$" wins over "$"
SYMBOL_TO_CURRENCY: List[Tuple[str, str]] = [
    ("HK$", "HKD"),
    ("NZ$", "NZD"),
    ("R$", "BRL"),
    ("C$", "CAD"),
    ("A$", "AUD"),
    ("S$", "SGD"),
    ("$", "USD"),
    ("€", "EUR"),
    ("£", "GBP"),
    ("¥", "JPY"),
    ("₹", "INR"),
    ("₩", "KRW"),
    ("₽", "RUB"),
    ("₺", "TRY"),
    ("₪", "ILS"),
    ("₦", "NGN"),
    ("₱", "PHP"),
    ("฿", "THB"),
    ("kr", "SEK"),
    ("zł", "PLN"),
    ("Fr", "CHF"),
]

SUPPORTED_CURRENCY_CODES = frozenset({
    "USD", "EUR", "GBP", "JPY", "CNY", "KRW", "INR", "RUB", "TRY",
    "BRL", "CAD", "AUD", "CHF", "SEK", "NOK", "DKK", "PLN", "THB",
    "MXN", "ZAR", "SGD", "HKD", "NZD", "ILS", "ARS", "NGN", "PHP",
    "CZK", "TWD", "SAR", "AED", "QAR", "KWD", "BHD", "OMR", "EGP",
    "MAD", "IDR", "MYR", "VND", "CLP", "COP", "PEN",
})

NAME_TO_CURRENCY: Dict[str, str] = {
    # English names and slang
    "dollar": "USD", "dollars": "USD", "usd": "USD",
    "buck": "USD", "bucks": "USD",
    "euro": "EUR", "euros": "EUR", "eur": "EUR",
    "pound": "GBP", "pounds": "GBP", "gbp": "GBP",
    "sterling": "GBP", "quid": "GBP",
    "yen": "JPY", "jpy": "JPY",
    "yuan": "CNY", "cny": "CNY", "renminbi": "CNY", "rmb": "CNY",
    "won": "KRW", "krw": "KRW",
    "rupee": "INR", "rupees": "INR", "inr": "INR",
    "ruble": "RUB", "rubles": "RUB", "rub": "RUB",
    "lira": "TRY", "try": "TRY",
    "real": "BRL", "reais": "BRL", "brl": "BRL",
    "franc": "CHF", "francs": "CHF", "chf": "CHF",
    "peso": "MXN", "pesos": "MXN", "mxn": "MXN",
    "rand": "ZAR", "zar": "ZAR",
    "shekel": "ILS", "shekels": "ILS", "ils": "ILS",
    "ringgit": "MYR", "myr": "MYR",
    "baht": "THB", "thb": "THB",
    "krona": "SEK", "kronor": "SEK", "sek": "SEK",
    "krone": "NOK", "nok": "NOK",
    "zloty": "PLN", "pln": "PLN",
    "naira": "NGN", "ngn": "NGN",
    "dirham": "AED", "dirhams": "AED", "aed": "AED",
    "riyal": "SAR", "riyals": "SAR", "sar": "SAR",
    "cad": "CAD", "aud": "AUD",
    # Arabic
    "دولار": "USD", "دولارات": "USD",
    "يورو": "EUR",
    "جنيه": "GBP",
    "ين": "JPY",
    "ريال": "SAR", "ريالات": "SAR",
    "درهم": "AED", "دراهم": "AED",
    "دينار": "KWD",
    "جنيه مصري": "EGP",
    # Spanish
    "dólar": "USD", "dólares": "USD", "dolares": "USD",
    "libra": "GBP", "libras": "GBP",
    "franco": "CHF", "francos": "CHF",
    # French
    "livre": "GBP", "livres": "GBP",
    "livre sterling": "GBP",
    "franc suisse": "CHF",
}

_NUMBER = r"\d[\d,]*(?:\.\d+)?|\.\d+"
_NAMES = "|".join(re.escape(name) for name in sorted(NAME_TO_CURRENCY, key=len, reverse=True))

_SYMBOL_PREFIX_RE = re.compile(
    rf"(HK\$|NZ\$|R\$|C\$|A\$|S\$|[$€£¥₹₩₽₺₪₦₱]|zł|kr|Fr)\s*({_NUMBER})"
)
_SYMBOL_SUFFIX_RE = re.compile(rf"({_NUMBER})\s*([$€£¥₹₩₽₺₪₦₱])")
_CODE_SUFFIX_RE = re.compile(rf"({_NUMBER})\s+([A-Za-z]{{3}})\b")
_NAME_SUFFIX_RE = re.compile(rf"({_NUMBER})\s+({_NAMES})\b", re.IGNORECASE)
_CONTEXT_RE = re.compile(rf"(?:\b(?:in|to|as|en)\s+|بال)([A-Za-z]{{3}}|{_NAMES})\b", re.IGNORECASE)

# Names that are also ordinary words ("I won", "try again") are not fiat hints
_AMBIGUOUS_NAMES = frozenset({"try", "won", "real", "rand", "rub", "ين", "sar"})
_HINT_NAMES = "|".join(
    re.escape(name) for name in sorted(NAME_TO_CURRENCY, key=len, reverse=True)
    if name not in _AMBIGUOUS_NAMES
)

# Any fiat marker at all, used to stop the "large integer means sats" heuristic
_FIAT_SYMBOL_HINT_RE = re.compile(r"HK\$|NZ\$|R\$|C\$|A\$|S\$|[$€£¥₹₩₽₺₪₦₱]")
_FIAT_NAME_HINT_RE = re.compile(rf"\b({_HINT_NAMES})\b", re.IGNORECASE)
_FIAT_CODE_HINT_RE = re.compile(rf"\b({'|'.join(sorted(SUPPORTED_CURRENCY_CODES))})\b")


class FiatAmount(BaseModel):
    """A fiat amount found in text."""
    amount: Decimal
    currency_code: str
    currency_symbol: str
    start: int = 0
    end: int = 0

    model_config = {"frozen": True}


def strip_commas(number: str) -> str:
    return number.replace(",", "")


def parse_decimal(number: str) -> Optional[Decimal]:
    """Parse a possibly comma-grouped number; None when it is not a number."""
    try:
        value = Decimal(strip_commas(number))
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


def symbol_for(code: str) -> str:
    """Currency symbol for an ISO code, or the code itself."""
    upper = code.upper()
    for symbol, symbol_code in SYMBOL_TO_CURRENCY:
        if symbol_code == upper:
            return symbol
    return upper


def resolve_currency_code(value: str) -> Optional[str]:
    """Resolve an ISO code, currency name or slang word to an ISO code."""
    trimmed = (value or "").strip()
    if not trimmed:
        return None
    if trimmed.upper() in SUPPORTED_CURRENCY_CODES:
        return trimmed.upper()
    return NAME_TO_CURRENCY.get(trimmed.lower())


class CurrencyParser:
    """Parses fiat amounts and currency references from text."""

    def parse_fiat_amount(self, text: str) -> Optional[FiatAmount]:
        """Return the first fiat amount, trying prefix, suffix, code then name forms."""
        normalized = normalize_text(text)
        for matcher in (self._match_symbol_prefix, self._match_symbol_suffix,
                        self._match_code_suffix, self._match_name_suffix):
            result = matcher(normalized)
            if result is not None:
                return result
        return None

    def parse_symbol_amount(self, text: str) -> Optional[FiatAmount]:
        """Only the symbol forms: "$50", "HK$500", "100€"."""
        normalized = normalize_text(text)
        return self._match_symbol_prefix(normalized) or self._match_symbol_suffix(normalized)

    def parse_currency_from_context(self, text: str) -> Optional[str]:
        """Currency named in a phrase like "in USD", "to euros", "as pounds"."""
        for match in _CONTEXT_RE.finditer(normalize_text(text)):
            code = resolve_currency_code(match.group(1))
            if code:
                return code
        return None

    def fiat_hint(self, text: str) -> Optional[str]:
        """ISO code of any fiat symbol, name or code present in the text."""
        normalized = normalize_text(text)
        match = _FIAT_SYMBOL_HINT_RE.search(normalized)
        if match:
            return next((c for s, c in SYMBOL_TO_CURRENCY if s == match.group(0)), "USD")
        match = _FIAT_NAME_HINT_RE.search(normalized)
        if match:
            return NAME_TO_CURRENCY.get(match.group(1).lower())
        match = _FIAT_CODE_HINT_RE.search(normalized)
        if match:
            return match.group(1)
        return None

    def _match_symbol_prefix(self, text: str) -> Optional[FiatAmount]:
        match = _SYMBOL_PREFIX_RE.search(text)
        if not match:
            return None
        amount = parse_decimal(match.group(2))
        if amount is None or amount <= 0:
            return None
        symbol = match.group(1)
        code = next((c for s, c in SYMBOL_TO_CURRENCY if s == symbol), "USD")
        return FiatAmount(amount=amount, currency_code=code, currency_symbol=symbol,
                          start=match.start(), end=match.end())

    def _match_symbol_suffix(self, text: str) -> Optional[FiatAmount]:
        match = _SYMBOL_SUFFIX_RE.search(text)
        if not match:
            return None
        amount = parse_decimal(match.group(1))
        if amount is None or amount <= 0:
            return None
        symbol = match.group(2)
        code = next((c for s, c in SYMBOL_TO_CURRENCY if s == symbol), "USD")
        return FiatAmount(amount=amount, currency_code=code, currency_symbol=symbol,
                          start=match.start(), end=match.end())

    def _match_code_suffix(self, text: str) -> Optional[FiatAmount]:
        for match in _CODE_SUFFIX_RE.finditer(text):
            code = match.group(2).upper()
            # BTC, SAT and friends are not fiat
            if code not in SUPPORTED_CURRENCY_CODES:
                continue
            amount = parse_decimal(match.group(1))
            if amount is None or amount <= 0:
                return None
            return FiatAmount(amount=amount, currency_code=code, currency_symbol=symbol_for(code),
                              start=match.start(), end=match.end())
        return None

    def _match_name_suffix(self, text: str) -> Optional[FiatAmount]:
        match = _NAME_SUFFIX_RE.search(text)
        if not match:
            return None
        amount = parse_decimal(match.group(1))
        code = NAME_TO_CURRENCY.get(match.group(2).lower())
        if amount is None or amount <= 0 or code is None:
            return None
        return FiatAmount(amount=amount, currency_code=code, currency_symbol=symbol_for(code),
                          start=match.start(), end=match.end())


currency_parser = CurrencyParser()
