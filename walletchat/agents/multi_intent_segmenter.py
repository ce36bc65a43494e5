#!/usr/bin/env python3
"""
Multi-Intent Segmenter Module
Splits compound messages such as "check balance and show fees" into one
segment per wallet command. A split only happens when both halves carry a
wallet keyword of their own.
"""

import re
from typing import List, Optional, Pattern, Set, Tuple

from walletchat.utils.logger import get_logger
from walletchat.utils.text_normalizer import normalize_text

logger = get_logger("multi_intent_segmenter")

WALLET_KEYWORDS: Set[str] = {
    "balance", "send", "receive", "fee", "fees", "price", "history",
    "transactions", "utxo", "utxos", "address", "health", "network", "export",
    "help", "settings", "refresh", "hide", "show", "convert", "transfer", "pay",
    "qr", "deposit", "mempool", "bump",
    # Spanish
    "saldo", "enviar", "recibir", "historial", "precio", "comisiones", "transacciones",
    # French
    "solde", "envoyer", "recevoir", "historique", "prix", "frais",
    # Arabic
    "رصيد", "رصيدي", "ارسل", "أرسل", "سعر", "رسوم", "سجل", "استقبال", "عنوان",
}

# Action families; two of them in one message conflict
SEND_KEYWORDS: Set[str] = {"send", "transfer", "pay", "enviar", "envoyer", "ارسل", "أرسل", "bump"}
RECEIVE_KEYWORDS: Set[str] = {"receive", "deposit", "recibir", "recevoir", "استقبال"}

# (connector, word carried over to the right-hand clause)
CONNECTORS: List[Tuple[str, str]] = [
    (" and then ", ""),
    (" and also ", ""),
    (" then ", ""),
    (" also ", ""),
    (" plus ", ""),
    (" and check ", "check "),
    (" and show ", "show "),
    (" and ", ""),
    ("; ", ""),
    (" y luego ", ""),
    (" y ", ""),
    (" et ", ""),
    (" ثم ", ""),
    (" و", ""),
]

_SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+|\n+")
_TOKEN_RE = re.compile(r"[\w']+")
_LEADING_FILLER_RE = re.compile(r"^(?:and|also|then|plus|y|et|ثم)\s+", re.IGNORECASE)
_ARABIC_PREFIXES = ("وال", "و", "ال")


def _tokens(text: str) -> List[str]:
    """Lowercased word tokens, with Arabic conjunction/article prefixes also stripped."""
    tokens = []
    for token in _TOKEN_RE.findall(text.lower()):
        tokens.append(token)
        for prefix in _ARABIC_PREFIXES:
            if token.startswith(prefix) and len(token) > len(prefix) + 1:
                tokens.append(token[len(prefix):])
                break
    return tokens


def count_wallet_keywords(text: str) -> int:
    return sum(1 for token in _TOKEN_RE.findall(text.lower()) if _is_keyword(token, WALLET_KEYWORDS))


def has_wallet_keyword(text: str) -> bool:
    return any(token in WALLET_KEYWORDS for token in _tokens(text))


def _is_keyword(token: str, keywords: Set[str]) -> bool:
    if token in keywords:
        return True
    return any(token.startswith(p) and token[len(p):] in keywords for p in _ARABIC_PREFIXES)


def action_family(text: str) -> Optional[str]:
    """'send' or 'receive' when the segment asks to move funds, else None."""
    tokens = _tokens(text)
    if any(token in SEND_KEYWORDS for token in tokens):
        return "send"
    if any(token in RECEIVE_KEYWORDS for token in tokens):
        return "receive"
    return None


class MultiIntentSegmenter:
    """Splits compound user messages into separately classifiable segments."""

    def split_if_compound(self, text: str) -> List[str]:
        """
        Split ``text`` into ordered wallet command segments.

        Args:
            text: Raw user message

        Returns:
            One or more segments; ``[text]`` when the message is a single command
        """
        normalized = normalize_text(text)
        if not normalized:
            return [text]
        if count_wallet_keywords(normalized) < 2:
            return [normalized]

        segments = self._split_connectors(normalized)
        segments = [part for segment in segments for part in self._split_sentences(segment)]
        segments = [cleaned for cleaned in (self._clean(s) for s in segments) if cleaned]
        if not segments:
            return [normalized]

        prioritized = self._prioritize(segments)
        if len(prioritized) > 1:
            logger.debug(f"Split compound message into {len(prioritized)} segments")
        return prioritized

    def is_compound(self, text: str) -> bool:
        return len(self.split_if_compound(text)) > 1

    def _split_connectors(self, segment: str) -> List[str]:
        lower = segment.lower()
        for connector, carry in CONNECTORS:
            start = lower.find(connector)
            while start != -1:
                end = start + len(connector)
                before = segment[:start]
                after = carry + segment[end:]
                if has_wallet_keyword(before) and has_wallet_keyword(after):
                    return self._split_connectors(before) + self._split_connectors(after)
                start = lower.find(connector, start + 1)
        return [segment]

    def _split_sentences(self, segment: str) -> List[str]:
        return self._split_on(segment, _SENTENCE_BOUNDARY_RE)

    def _split_on(self, segment: str, pattern: Pattern) -> List[str]:
        for match in pattern.finditer(segment):
            before = segment[:match.start()]
            after = segment[match.end():]
            if has_wallet_keyword(before) and has_wallet_keyword(after):
                return self._split_on(before, pattern) + self._split_on(after, pattern)
        return [segment]

    @staticmethod
    def _clean(segment: str) -> str:
        cleaned = segment.strip(" \t,;:.!")
        previous = None
        while previous != cleaned:
            previous = cleaned
            cleaned = _LEADING_FILLER_RE.sub("", cleaned).strip(" \t,;:.!")
        return cleaned

    @staticmethod
    def _prioritize(segments: List[str]) -> List[str]:
        """Action segments take the whole turn; only the first action survives."""
        actions = [segment for segment in segments if action_family(segment)]
        if not actions:
            return segments
        if len(actions) > 1:
            logger.info(f"Dropping {len(actions) - 1} conflicting action segment(s)")
        return actions[:1]


multi_intent_segmenter = MultiIntentSegmenter()
