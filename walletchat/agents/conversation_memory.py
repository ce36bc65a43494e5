#!/usr/bin/env python3
"""
Conversation Memory Module
Keeps the append-only turn log of one conversation plus the "last mentioned"
and "last shown" projections that reference resolution reads, and a few
behavior signals about how the user writes.
"""

import re
import unicodedata
from decimal import Decimal
from typing import List, Optional, Tuple

from walletchat.schemas.core import (
    ConversationTurn, FeeEstimates, FeeLevel, FlowState, ParsedEntity,
    SentTransaction, ShownData, TransactionSummary, WalletIntent
)
from walletchat.utils.logger import get_logger

logger = get_logger("conversation_memory")

USER = "user"
ASSISTANT = "assistant"

_ARABIC_RE = re.compile(r"[؀-ۿ]")
_SPANISH_RE = re.compile(r"[ñ¿¡]|\b(?:hola|gracias|enviar|envía|saldo|cuánto|cuanto|por favor|dirección)\b",
                         re.IGNORECASE)
_FRENCH_RE = re.compile(r"[çœ]|\b(?:bonjour|merci|envoyer|solde|combien|adresse|s'il vous plaît|frais)\b",
                        re.IGNORECASE)


def detect_language(text: str) -> Optional[str]:
    """Language marker found in ``text``: 'ar', 'es', 'fr' or None."""
    if _ARABIC_RE.search(text):
        return "ar"
    if _SPANISH_RE.search(text):
        return "es"
    if _FRENCH_RE.search(text):
        return "fr"
    return None


def contains_emoji(text: str) -> bool:
    return any(ord(ch) > 0x23F0 and unicodedata.category(ch) == "So" for ch in text)


class ConversationMemory:
    """
    Memory for a single conversation.

    The orchestrator is the only writer: it records the user message and the
    assistant response after each full pass. Every other stage only reads.
    """

    def __init__(self):
        self._turns: List[ConversationTurn] = []
        self._clear_projections()

    def _clear_projections(self):
        # Last mentioned
        self.last_address: Optional[str] = None
        self.last_amount: Optional[Decimal] = None
        self.last_txid: Optional[str] = None
        self.last_fee_level: Optional[FeeLevel] = None

        # Last shown
        self.last_shown_balance: Optional[Decimal] = None
        self.last_shown_fiat_balance: Optional[Decimal] = None
        self.last_shown_transactions: Optional[List[TransactionSummary]] = None
        self.last_shown_fee_estimates: Optional[FeeEstimates] = None
        self.last_shown_receive_address: Optional[str] = None
        self.last_sent_tx: Optional[SentTransaction] = None

        self.current_flow_state: FlowState = FlowState.idle()

        # Behavior signals
        self.user_uses_emoji = False
        self.user_language = "en"
        self.average_message_length = 0.0
        self._user_turn_count = 0
        self._last_send_turn: Optional[int] = None

    # Turn log
    @property
    def turns(self) -> Tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def turn_count(self) -> int:
        return len(self._turns)

    @property
    def user_turns(self) -> List[ConversationTurn]:
        return [turn for turn in self._turns if turn.role == USER]

    def recent_turns(self, n: int = 10) -> List[ConversationTurn]:
        return self._turns[-n:] if n > 0 else []

    @property
    def last_user_message(self) -> Optional[str]:
        return next((t.text for t in reversed(self._turns) if t.role == USER), None)

    @property
    def last_ai_response(self) -> Optional[str]:
        return next((t.text for t in reversed(self._turns) if t.role == ASSISTANT), None)

    @property
    def last_user_intent(self) -> Optional[WalletIntent]:
        return next((t.intent for t in reversed(self._turns) if t.role == USER), None)

    @property
    def previous_user_intent(self) -> Optional[WalletIntent]:
        user_turns = self.user_turns
        if len(user_turns) < 2:
            return None
        return user_turns[-2].intent

    @property
    def turns_since_last_send(self) -> Optional[int]:
        """Turns recorded after the one that confirmed the last send."""
        if self._last_send_turn is None:
            return None
        return len(self._turns) - 1 - self._last_send_turn

    @property
    def user_is_terse(self) -> bool:
        return self._user_turn_count > 0 and self.average_message_length < 15

    # Recording
    def record_user_message(self, text: str, intent: Optional[WalletIntent] = None,
                            entities: Optional[ParsedEntity] = None):
        """Append a user turn and update the last-mentioned values it carries."""
        entities = entities or ParsedEntity()
        self._turns.append(ConversationTurn(role=USER, text=text, intent=intent, entities=entities))

        # Only overwrite what this turn actually mentioned
        if entities.address:
            self.last_address = entities.address
        amount_btc = entities.amount_btc
        if amount_btc is not None:
            self.last_amount = amount_btc
        if entities.txid:
            self.last_txid = entities.txid
        if entities.fee_level:
            self.last_fee_level = entities.fee_level

        self._update_behavior(text)

    def record_ai_response(self, text: str, shown: Optional[ShownData] = None):
        """Append an assistant turn and update the last-shown values from its payload."""
        self._turns.append(ConversationTurn(role=ASSISTANT, text=text))
        if shown is None:
            return

        if shown.balance is not None:
            self.last_shown_balance = shown.balance
        if shown.fiat_balance is not None:
            self.last_shown_fiat_balance = shown.fiat_balance
        if shown.transactions is not None:
            self.last_shown_transactions = list(shown.transactions)
        if shown.fee_estimates is not None:
            self.last_shown_fee_estimates = shown.fee_estimates
        if shown.receive_address:
            self.last_shown_receive_address = shown.receive_address
            self.last_address = shown.receive_address
        if shown.sent_transaction is not None:
            sent = shown.sent_transaction
            self.last_sent_tx = sent
            self.last_address = sent.address
            self.last_amount = sent.amount
            self.last_txid = sent.txid
            self._last_send_turn = len(self._turns) - 1

    def reset(self):
        """Forget everything, turns included."""
        self._turns = []
        self._clear_projections()
        logger.debug("Conversation memory reset")

    def _update_behavior(self, text: str):
        self._user_turn_count += 1
        n = self._user_turn_count
        self.average_message_length += (len(text) - self.average_message_length) / n

        if contains_emoji(text):
            self.user_uses_emoji = True
        language = detect_language(text)
        if language:
            self.user_language = language
