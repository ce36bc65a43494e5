#!/usr/bin/env python3
"""
Reference Resolver Module
Resolves conversational references against conversation memory:
"same address", "that amount", "double it", "the second one", "#3",
"do it again", "actually make it 0.05".
Only values that memory actually holds are ever returned.
"""

import re
from decimal import Decimal
from typing import List, Optional, Tuple

from walletchat.agents.conversation_memory import ConversationMemory
from walletchat.agents.entity_extractor import EntityExtractor
from walletchat.schemas.core import (
    BitcoinUnit, IntentType, ParsedEntity, ResolvedReferences, TransactionSummary, WalletIntent
)
from walletchat.utils.amount_converter import AmountConverter
from walletchat.utils.logger import get_logger
from walletchat.utils.text_normalizer import normalize_for_matching, normalize_text

logger = get_logger("reference_resolver")

ADDRESS_TRIGGERS = [
    "same address", "that address", "the address", "previous address",
    "last address", "there again", "same place", "same destination",
    "نفس العنوان", "ذلك العنوان",
    "la misma dirección", "la misma direccion", "esa dirección", "esa direccion",
    "la même adresse", "cette adresse",
]

AMOUNT_TRIGGERS = [
    "same amount", "that amount", "the amount", "that much",
    "نفس المبلغ", "la misma cantidad", "le même montant",
]

FEE_TRIGGERS = ["same fee", "same speed", "same priority", "نفس الرسوم", "la misma comisión"]

TXID_TRIGGERS = ["that transaction", "that tx", "this transaction", "that payment", "esa transacción"]

REPEAT_TRIGGERS = [
    "again", "repeat", "do it again", "same thing", "one more time",
    "redo", "repeat that", "do that again",
    "مرة أخرى", "otra vez", "encore",
]

MODIFICATION_TRIGGERS = [
    "change it to", "change to", "make it", "actually,", "actually",
    "instead", "no,", "nah,", "wait,",
]

# (pattern, multiplier) applied to the last amount
RELATIVE_AMOUNTS: List[Tuple[re.Pattern, Decimal]] = [
    (re.compile(r"\b(?:double|twice)\b"), Decimal(2)),
    (re.compile(r"\btriple\b"), Decimal(3)),
    (re.compile(r"\bhalf\s+(?:of\s+)?(?:that|it|the\s+amount|as\s+much)\b"), Decimal("0.5")),
    (re.compile(r"\b(?:a\s+)?(?:bit|little)\s+more\b"), Decimal("1.1")),
    (re.compile(r"\b(?:a\s+)?(?:bit|little)\s+less\b"), Decimal("0.9")),
]

ORDINAL_WORDS = {
    "first": 0, "1st": 0, "second": 1, "2nd": 1, "third": 2, "3rd": 2,
    "fourth": 3, "4th": 3, "fifth": 4, "5th": 4, "sixth": 5, "6th": 5,
    "seventh": 6, "7th": 6, "eighth": 7, "8th": 7, "ninth": 8, "9th": 8,
    "tenth": 9, "10th": 9,
}
_ORDINALS = "|".join(sorted(ORDINAL_WORDS, key=len, reverse=True))
_ORDINAL_RE = re.compile(
    rf"\b(?:the\s+({_ORDINALS})\b|({_ORDINALS})\s+(?:one|transaction|tx|payment|transfer|entry|item)\b)"
)
_HASH_RE = re.compile(r"#(\d+)\b")
# "last" only as a pointer at a list item, never "last 5" or "last address"
_MOST_RECENT_RE = re.compile(
    r"\b(?:the\s+)?(?:last|latest|most\s+recent)\b(?!\s+\d)(?!\s+(?:address|amount|fee|time)\b)"
    r"(?=\s+(?:one|transaction|tx|payment|transfer)\b|\s*$|\s*[?.!])"
)


def _contains_any(text: str, phrases: List[str]) -> bool:
    return any(re.search(rf"(?<!\w){re.escape(p)}(?!\w)" if p[-1].isalnum() else rf"(?<!\w){re.escape(p)}",
                         text) for p in phrases)


class ReferenceResolver:
    """Resolves anaphora in user text using conversation memory."""

    def __init__(self, extractor: Optional[EntityExtractor] = None):
        self.extractor = extractor or EntityExtractor()

    def resolve(self, text: str, memory: ConversationMemory) -> ResolvedReferences:
        """Resolve every reference category present in ``text``."""
        lower = normalize_for_matching(text)
        resolved = ResolvedReferences()
        if not lower:
            return resolved

        if memory.last_address and _contains_any(lower, ADDRESS_TRIGGERS):
            resolved.address = memory.last_address

        amount, relative = self._resolve_amount(lower, memory)
        if amount is not None:
            resolved.amount = amount
            resolved.unit = BitcoinUnit.BTC
            resolved.relative_amount = relative

        if memory.last_fee_level and _contains_any(lower, FEE_TRIGGERS):
            resolved.fee_level = memory.last_fee_level

        if memory.last_txid and _contains_any(lower, TXID_TRIGGERS):
            resolved.txid = memory.last_txid

        transaction, index = self._resolve_ordinal(lower, memory.last_shown_transactions)
        if transaction is not None:
            resolved.transaction = transaction
            resolved.transaction_index = index

        resolved.repeat_intent = self._resolve_repeat(lower, memory)

        modification = self._resolve_modification(text, lower)
        if modification is not None:
            resolved.is_modification = True
            resolved.modification_entities = modification

        if resolved.has_any:
            logger.debug(f"Resolved references: {resolved.model_dump(exclude_none=True, exclude_defaults=True)}")
        return resolved

    def enrich_with_references(self, text: str, resolved: ResolvedReferences) -> str:
        """
        Append resolved values that the text does not already state.

        Args:
            text: Original user text
            resolved: Output of ``resolve`` for the same text

        Returns:
            Text with the missing address, amount and txid appended
        """
        enriched = normalize_text(text)
        if resolved.address and self.extractor.extract_address(enriched) is None:
            enriched += f" {resolved.address}"

        if resolved.amount is not None and not self._has_explicit_amount(enriched):
            unit = " sats" if resolved.unit is not None and resolved.unit.is_sats else " BTC"
            enriched += f" {AmountConverter.format_plain(resolved.amount)}{unit}"

        txid = resolved.txid or (resolved.transaction.txid if resolved.transaction else None)
        if txid and self.extractor.extract_txid(enriched) is None:
            enriched += f" {txid}"
        return enriched

    def merge_entities(self, entities: ParsedEntity, resolved: ResolvedReferences,
                       in_flight: bool = False) -> ParsedEntity:
        """
        Fill gaps in ``entities`` with resolved values; explicit values always win.

        While a send is in flight, a correction ("the 0.01 was wrong, make it 0.02")
        replaces the values mentioned before the correction phrase.
        """
        if in_flight and resolved.is_modification and resolved.modification_entities is not None:
            entities = self._apply_correction(entities, resolved.modification_entities)
        update = {}
        if entities.address is None and resolved.address:
            update["address"] = resolved.address
        if resolved.amount is not None:
            explicit = entities.amount is not None and entities.amount > 0
            if not explicit or (resolved.relative_amount and entities.amount is not None and entities.amount < 0):
                update.update(amount=resolved.amount, unit=resolved.unit or BitcoinUnit.BTC,
                              fiat_amount=False)
        if entities.fee_level is None and resolved.fee_level:
            update["fee_level"] = resolved.fee_level
        txid = resolved.txid or (resolved.transaction.txid if resolved.transaction else None)
        if entities.txid is None and txid:
            update["txid"] = txid
        return entities.model_copy(update=update) if update else entities

    @staticmethod
    def _apply_correction(entities: ParsedEntity, correction: ParsedEntity) -> ParsedEntity:
        update = {}
        if correction.amount is not None:
            update.update(amount=correction.amount, unit=correction.unit,
                          currency=correction.currency, fiat_amount=correction.fiat_amount)
        for name in ("address", "fee_level", "fee_rate"):
            value = getattr(correction, name)
            if value is not None:
                update[name] = value
        return entities.model_copy(update=update) if update else entities

    def _has_explicit_amount(self, text: str) -> bool:
        # Sentinels ("all", "half") are not explicit; "half of that" scales the last amount
        amount = self.extractor.extract_amount(self.extractor.mask_sentinels(text))
        return amount is not None and amount.amount > 0

    # Categories
    def _resolve_amount(self, lower: str, memory: ConversationMemory) -> Tuple[Optional[Decimal], bool]:
        base = memory.last_amount
        if base is None or base <= 0:
            return None, False
        if _contains_any(lower, AMOUNT_TRIGGERS):
            return base, False
        for pattern, factor in RELATIVE_AMOUNTS:
            if pattern.search(lower):
                return AmountConverter.quantize_btc(base * factor), True
        return None, False

    def _resolve_ordinal(self, lower: str, transactions: Optional[List[TransactionSummary]]
                         ) -> Tuple[Optional[TransactionSummary], Optional[int]]:
        if not transactions:
            return None, None
        index = self.ordinal_index(lower)
        if index is None:
            return None, None
        if index == -1:
            # Lists are newest first
            return transactions[0], 0
        if 0 <= index < len(transactions):
            return transactions[index], index
        return None, None

    @staticmethod
    def ordinal_index(lower: str) -> Optional[int]:
        """0-based list index named by ``lower``; -1 means the most recent item."""
        match = _ORDINAL_RE.search(lower)
        if match:
            return ORDINAL_WORDS[match.group(1) or match.group(2)]
        match = _HASH_RE.search(lower)
        if match and int(match.group(1)) >= 1:
            return int(match.group(1)) - 1
        if _MOST_RECENT_RE.search(lower):
            return -1
        return None

    def _resolve_repeat(self, lower: str, memory: ConversationMemory) -> Optional[WalletIntent]:
        if not _contains_any(lower, REPEAT_TRIGGERS):
            return None
        intent = memory.last_user_intent
        if intent is None or intent.type == IntentType.UNKNOWN:
            return None
        if intent.type == IntentType.SEND:
            update = {}
            sent = memory.last_sent_tx
            if intent.address is None and (sent or memory.last_address):
                update["address"] = sent.address if sent else memory.last_address
            if intent.amount is None and (sent or memory.last_amount is not None):
                update["amount"] = sent.amount if sent else memory.last_amount
                update["unit"] = BitcoinUnit.BTC
            if update:
                intent = WalletIntent(**{**intent.model_dump(), **update})
        return intent

    def _resolve_modification(self, text: str, lower: str) -> Optional[ParsedEntity]:
        # The last correction phrase wins: "actually, not 5000 sats, make it 8000 sats"
        end = None
        for trigger in MODIFICATION_TRIGGERS:
            # "instead of 0.01" names the old value
            edge = r"(?!\w)(?!\s+of\b)" if trigger[-1].isalnum() else ""
            for match in re.finditer(rf"(?<!\w){re.escape(trigger)}{edge}", lower):
                if end is None or match.end() > end:
                    end = match.end()
        if end is None:
            return None
        entities = self.extractor.extract(normalize_text(text)[end:])
        if entities.is_empty:
            entities = self.extractor.extract(text)
        return entities


reference_resolver = ReferenceResolver()
