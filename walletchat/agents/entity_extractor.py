#!/usr/bin/env python3
"""
Entity Extractor Module
Extracts amounts, currencies, addresses, transaction ids, counts and fee
levels from free chat text using layered regular expressions and lookup
tables. Absence of a field is a normal outcome, never an error.
"""

import re
from decimal import Decimal
from typing import List, Optional, Tuple
from pydantic import BaseModel

from walletchat.schemas.core import BitcoinUnit, FeeLevel, ParsedEntity
from walletchat.utils.address_validator import AddressValidator
from walletchat.utils.amount_converter import AmountConverter, find_word_number
from walletchat.utils.bip21 import parse_bip21
from walletchat.utils.currency_parser import (
    CurrencyParser, NAME_TO_CURRENCY, SUPPORTED_CURRENCY_CODES, parse_decimal
)
from walletchat.utils.logger import get_logger
from walletchat.utils.text_normalizer import normalize_text

logger = get_logger("entity_extractor")


class AmountMatch(BaseModel):
    """An amount located in text, before it is folded into a ParsedEntity."""
    amount: Decimal
    unit: BitcoinUnit = BitcoinUnit.BTC
    currency: Optional[str] = None
    explicit_unit: bool = False
    source: str = "numeric"


ENTIRE_BALANCE = Decimal(-1)
HALF_BALANCE = Decimal("-0.5")

_ALL_RE = re.compile(
    r"(?<![\w-])(all|max|maximum|everything|entire\s+balance|whole\s+balance|"
    r"todo|todos|todo\s+mi\s+saldo|tout|tout\s+mon\s+solde|الكل|كل\s+الرصيد|كل\s+رصيدي)"
    r"(?![\w-])(?!\s*(?:fees?|rates?|priority|speed|transactions?|txs?))",
    re.IGNORECASE,
)
_HALF_RE = re.compile(
    r"(?<![\w-])(half|la\s+mitad|mitad|la\s+moiti[ée]|moiti[ée]|نصف|النصف)(?![\w-])",
    re.IGNORECASE,
)

_UNIT_WORDS = r"btc|bitcoins?|sats?|satoshis?"
_FIAT_WORDS = "|".join(
    re.escape(name) for name in sorted(NAME_TO_CURRENCY, key=len, reverse=True)
    if re.fullmatch(r"[a-z]+", name)
)

_AMOUNT_RE = re.compile(
    r"(?:^|(?<=[\s(:=]))([$€£¥])?(\d+(?:,\d{3})+(?:\.\d+)?|\d+\.?\d*|\.\d+)(k|m)?"
    rf"(?:\s*({_UNIT_WORDS}|{_FIAT_WORDS}|[A-Za-z]{{3}}))?"
    r"(?![\w$€£¥])",
    re.IGNORECASE,
)

# Units/currency words that may follow a spelled-out number
_WORD_UNIT_RE = re.compile(rf"^\s*({_UNIT_WORDS}|{_FIAT_WORDS})\b", re.IGNORECASE)
_WORD_AMOUNT_LEAD_RE = re.compile(
    r"(?:send|pay|transfer|move|enviar|envía|envia|envoyer|payer|make\s+it|change\s+(?:it\s+)?to)\s*$",
    re.IGNORECASE,
)

_ADDRESS_RE = re.compile(
    r"(?<![A-Za-z0-9])("
    r"(?:bc1|BC1|tb1|TB1)[qpQP][a-zA-HJ-NP-Za-km-z02-9]{38,58}"
    r"|[13][a-km-zA-HJ-NP-Z1-9]{24,33}"
    r"|[mn2][a-km-zA-HJ-NP-Z1-9]{24,33}"
    r")(?![A-Za-z0-9])"
)
_TXID_RE = re.compile(r"(?<![A-Fa-f0-9])([A-Fa-f0-9]{64})(?![A-Fa-f0-9])")

_COUNT_RE = re.compile(
    r"\b(?:last|show|recent|top|past|previous|[úu]ltim[oa]s|derni[eè]res?)\s+(\d+)\b(?!\.\d)"
    r"|\b(\d+)\s+(?:transactions?|txs?|transfers?|transacciones|payments?)\b",
    re.IGNORECASE,
)
_ORDINAL_HASH_RE = re.compile(r"#\d+\b")

_FEE_RATE_RE = re.compile(
    r"\b(\d+)\s*(?:sats?|satoshis?|s)?\s*(?:/\s*v?b(?:yte)?|per\s+v?byte|per\s+vb)\b",
    re.IGNORECASE,
)

FEE_LEVEL_PATTERNS: List[Tuple[re.Pattern, FeeLevel]] = [
    (re.compile(r"\b(fast|faster|fastest|priority|urgent|high|rush|asap|next\s*block|"
                r"r[áa]pido|urgente|prioridad|rapide|سريع|عاجل)\b", re.IGNORECASE), FeeLevel.FAST),
    (re.compile(r"\b(medium|normal|standard|regular|default|moderate|medio|moyen|عادي)\b",
                re.IGNORECASE), FeeLevel.MEDIUM),
    (re.compile(r"\b(slow|slower|low|economy|cheap|cheaper|cheapest|no\s*rush|eco|saver|"
                r"lento|econ[óo]mico|lent|[ée]conomique|بطيء|اقتصادي)\b", re.IGNORECASE), FeeLevel.SLOW),
    (re.compile(r"\b(custom)\s*(?:fee|rate)?\b", re.IGNORECASE), FeeLevel.CUSTOM),
]

_TRAILING_PUNCT = ".,;:!?)]}>\"'"


def _mask(text: str, spans: List[Tuple[int, int]]) -> str:
    """Blank out character spans so later patterns cannot match inside them."""
    if not spans:
        return text
    chars = list(text)
    for start, end in spans:
        for i in range(max(start, 0), min(end, len(chars))):
            chars[i] = " "
    return "".join(chars)


class EntityExtractor:
    """Extracts structured wallet entities from user text."""

    def __init__(self, currency_parser: Optional[CurrencyParser] = None):
        self.currency_parser = currency_parser or CurrencyParser()

    def extract(self, text: str) -> ParsedEntity:
        """Extract every recognized entity from ``text``."""
        normalized = normalize_text(text)
        if not normalized:
            return ParsedEntity()

        fields = {}
        consumed: List[Tuple[int, int]] = []

        # BIP21 first: address and amount come from the URI atomically
        bip21 = parse_bip21(normalized)
        if bip21 is not None:
            fields["address"] = bip21.address
            fields["label"] = bip21.label
            fields["message"] = bip21.message
            if bip21.amount is not None:
                fields["amount"] = bip21.amount
                fields["unit"] = BitcoinUnit.BTC
            uri = re.search(r"bitcoin:\S+", normalized, re.IGNORECASE)
            if uri:
                consumed.append(uri.span())

        if "address" not in fields:
            address, span = self._find_address(normalized)
            if address:
                fields["address"] = address
                consumed.append(span)
        else:
            # Other addresses in the text must not leak into amount parsing
            consumed.extend(m.span() for m in _ADDRESS_RE.finditer(normalized))

        txid_match = _TXID_RE.search(normalized)
        if txid_match:
            fields["txid"] = txid_match.group(1).lower()
            consumed.append(txid_match.span())

        fee_rate_match = _FEE_RATE_RE.search(normalized)
        if fee_rate_match:
            fields["fee_rate"] = int(fee_rate_match.group(1))
            fields["fee_level"] = FeeLevel.CUSTOM
            consumed.append(fee_rate_match.span())
        else:
            fields["fee_level"] = self.extract_fee_level(normalized)

        count_match = _COUNT_RE.search(normalized)
        if count_match:
            fields["count"] = int(count_match.group(1) or count_match.group(2))
            consumed.append(count_match.span(1) if count_match.group(1) else count_match.span(2))
        consumed.extend(m.span() for m in _ORDINAL_HASH_RE.finditer(normalized))

        if "amount" not in fields:
            amount = self._find_amount(_mask(normalized, consumed))
            if amount is not None:
                fields["amount"] = amount.amount
                fields["unit"] = amount.unit
                fields["currency"] = amount.currency
                fields["fiat_amount"] = amount.currency is not None

        if fields.get("currency") is None:
            fields["currency"] = self.currency_parser.parse_currency_from_context(normalized)

        entity = ParsedEntity(**{k: v for k, v in fields.items() if v is not None})
        if not entity.is_empty:
            logger.debug(f"Extracted entities: {entity.model_dump(exclude_none=True)}")
        return entity

    # Narrow accessors
    def extract_amount(self, text: str) -> Optional[AmountMatch]:
        """Amount with unit and optional fiat currency, or None."""
        normalized = normalize_text(text)
        bip21 = parse_bip21(normalized)
        if bip21 is not None and bip21.amount is not None:
            return AmountMatch(amount=bip21.amount, unit=BitcoinUnit.BTC, explicit_unit=True, source="bip21")
        spans = [m.span() for m in _ADDRESS_RE.finditer(normalized)]
        spans.extend(m.span() for m in _TXID_RE.finditer(normalized))
        spans.extend(m.span() for m in _FEE_RATE_RE.finditer(normalized))
        spans.extend(m.span() for m in _ORDINAL_HASH_RE.finditer(normalized))
        for m in _COUNT_RE.finditer(normalized):
            spans.append(m.span(1) if m.group(1) else m.span(2))
        return self._find_amount(_mask(normalized, spans))

    def extract_address(self, text: str) -> Optional[str]:
        normalized = normalize_text(text)
        bip21 = parse_bip21(normalized)
        if bip21 is not None:
            return bip21.address
        address, _ = self._find_address(normalized)
        return address

    @staticmethod
    def mask_sentinels(text: str) -> str:
        """Blank out "all"/"half" words in every supported language."""
        spans = [m.span() for m in _ALL_RE.finditer(text)]
        spans.extend(m.span() for m in _HALF_RE.finditer(text))
        return _mask(text, spans)

    def extract_txid(self, text: str) -> Optional[str]:
        match = _TXID_RE.search(normalize_text(text))
        return match.group(1).lower() if match else None

    def extract_count(self, text: str) -> Optional[int]:
        match = _COUNT_RE.search(normalize_text(text))
        if not match:
            return None
        return int(match.group(1) or match.group(2))

    def extract_fee_rate(self, text: str) -> Optional[int]:
        match = _FEE_RATE_RE.search(normalize_text(text))
        return int(match.group(1)) if match else None

    def extract_fee_level(self, text: str) -> Optional[FeeLevel]:
        """Custom numeric rate first, then the ordered keyword sets."""
        normalized = normalize_text(text)
        if _FEE_RATE_RE.search(normalized):
            return FeeLevel.CUSTOM
        for pattern, level in FEE_LEVEL_PATTERNS:
            if pattern.search(normalized):
                return level
        return None

    def extract_currency(self, text: str) -> Optional[str]:
        amount = self.extract_amount(text)
        if amount is not None and amount.currency:
            return amount.currency
        return self.currency_parser.parse_currency_from_context(text)

    # Internals
    def _find_address(self, text: str) -> Tuple[Optional[str], Tuple[int, int]]:
        for match in _ADDRESS_RE.finditer(text):
            candidate = match.group(1).rstrip(_TRAILING_PUNCT)
            if AddressValidator.is_valid(candidate):
                return candidate, match.span(1)
        return None, (0, 0)

    def _find_amount(self, text: str) -> Optional[AmountMatch]:
        """Resolve an amount: all, half, word numbers, fiat symbols, then numerics."""
        if _ALL_RE.search(text):
            return AmountMatch(amount=ENTIRE_BALANCE, unit=BitcoinUnit.BTC, source="all")
        if _HALF_RE.search(text):
            return AmountMatch(amount=HALF_BALANCE, unit=BitcoinUnit.BTC, source="half")

        word = self._word_amount(text)
        if word is not None:
            return word

        fiat = self.currency_parser.parse_symbol_amount(text)
        if fiat is not None:
            return AmountMatch(amount=fiat.amount, unit=BitcoinUnit.BTC, currency=fiat.currency_code,
                               explicit_unit=True, source="fiat_symbol")

        return self._numeric_amount(text)

    def _word_amount(self, text: str) -> Optional[AmountMatch]:
        found = find_word_number(text)
        if found is None:
            return None
        value, start, end = found
        if value <= 0:
            return None

        tail = text[end:]
        unit_match = _WORD_UNIT_RE.match(tail)
        lead = text[:start]
        whole = text.strip(_TRAILING_PUNCT + " ").lower() == text[start:end].lower()
        # A bare "one" in "the second one" is not an amount
        if not (unit_match or whole or _WORD_AMOUNT_LEAD_RE.search(lead)):
            return None

        unit, currency = None, None
        if unit_match:
            unit, currency = self._classify_suffix(unit_match.group(1))
        return self._finalize(value, unit, currency, has_decimal="point" in text[start:end].lower(),
                              source="words", context=text)

    def _numeric_amount(self, text: str) -> Optional[AmountMatch]:
        for match in _AMOUNT_RE.finditer(text):
            symbol, number, multiplier, suffix = match.groups()
            number = number.rstrip(".") if number.endswith(".") else number
            value = parse_decimal(number)
            if value is None:
                continue

            if multiplier:
                value *= 1_000 if multiplier.lower() == "k" else 1_000_000

            unit, currency = (None, None)
            if suffix:
                unit, currency = self._classify_suffix(suffix)
                if unit is None and currency is None:
                    # Three letters that are not a unit ("5 to") belong to the sentence
                    suffix = None
            if currency is None and symbol:
                currency = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}.get(symbol)

            result = self._finalize(value, unit, currency, has_decimal="." in number,
                                    source="numeric", context=text)
            if result is not None:
                return result
        return None

    @staticmethod
    def _classify_suffix(suffix: str) -> Tuple[Optional[BitcoinUnit], Optional[str]]:
        lowered = suffix.lower()
        if lowered in ("btc", "bitcoin", "bitcoins"):
            return BitcoinUnit.BTC, None
        if lowered in ("sat", "sats"):
            return BitcoinUnit.SATS, None
        if lowered in ("satoshi", "satoshis"):
            return BitcoinUnit.SATOSHIS, None
        if suffix.upper() in SUPPORTED_CURRENCY_CODES and (suffix.isupper() or lowered in NAME_TO_CURRENCY):
            return None, suffix.upper()
        if lowered in NAME_TO_CURRENCY:
            return None, NAME_TO_CURRENCY[lowered]
        return None, None

    def _finalize(self, value: Decimal, unit: Optional[BitcoinUnit], currency: Optional[str],
                  has_decimal: bool, source: str, context: str) -> Optional[AmountMatch]:
        """Apply sanity bounds and the unit heuristics to a raw number."""
        if value <= 0:
            return None

        if currency:
            return AmountMatch(amount=value, unit=BitcoinUnit.BTC, currency=currency,
                               explicit_unit=True, source=source)

        explicit = unit is not None
        if unit is None and value >= 1_000 and not has_decimal:
            hinted = self.currency_parser.fiat_hint(context)
            if hinted:
                # "1500 ... dollars": leave it fiat rather than guessing sats
                return AmountMatch(amount=value, unit=BitcoinUnit.BTC, currency=hinted,
                                   explicit_unit=False, source=source)
            unit = BitcoinUnit.SATS

        unit = unit or BitcoinUnit.BTC
        if not AmountConverter.within_supply(value, unit.is_sats):
            logger.debug(f"Rejected amount {value} {unit.value}: above 21M BTC")
            return None
        return AmountMatch(amount=value, unit=unit, explicit_unit=explicit, source=source)


entity_extractor = EntityExtractor()
