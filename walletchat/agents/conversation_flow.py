#!/usr/bin/env python3
"""
Conversation Flow Module
State machine for the multi-turn send flow:

    idle -> awaiting_address -> awaiting_amount -> [awaiting_fee_level]
         -> awaiting_confirmation -> processing -> completed | error -> idle

The controller only decides; it never talks to collaborators. Broadcasting
is driven by the orchestrator through ``begin_broadcast``, ``complete`` and
``fail``.
"""

import re
from decimal import Decimal
from typing import Optional, Tuple

from walletchat.schemas.core import (
    FeeEstimates, FeeLevel, FlowAction, FlowActionKind, FlowState, FlowStateKind,
    IntentType, ParsedEntity, PendingTransactionInfo, SentTransaction, WalletIntent,
    WalletSnapshot
)
from walletchat.agents.pattern_classifier import contains_negation
from walletchat.utils.address_validator import AddressValidator
from walletchat.utils.amount_converter import AmountConverter
from walletchat.utils.config import settings
from walletchat.utils.errors import BroadcastError, FlowTransitionError
from walletchat.utils.logger import get_logger
from walletchat.utils.text_normalizer import normalize_for_matching

logger = get_logger("conversation_flow")

# Intents answered on the side while a send is being assembled
UNRELATED_INTENTS = frozenset({
    IntentType.BALANCE, IntentType.FEE_ESTIMATE, IntentType.PRICE, IntentType.HISTORY,
    IntentType.ABOUT, IntentType.WALLET_HEALTH, IntentType.NETWORK_STATUS,
    IntentType.UTXO_LIST, IntentType.RECEIVE, IntentType.NEW_ADDRESS,
    IntentType.HIDE_BALANCE, IntentType.SHOW_BALANCE, IntentType.REFRESH_WALLET,
    IntentType.EXPORT_HISTORY, IntentType.GREETING, IntentType.EXPLAIN,
    IntentType.CONVERT_AMOUNT, IntentType.TRANSACTION_DETAIL, IntentType.SETTINGS,
})

# Intents whose entities may carry the value the flow is waiting for
DATA_CARRIER_INTENTS = frozenset({
    IntentType.UNKNOWN, IntentType.SEND, IntentType.CONVERT_AMOUNT,
    IntentType.CONFIRM_ACTION, IntentType.FEE_ESTIMATE,
})

# Intents that may rewrite a pending draft ("make it 0.02", "send 0.1 instead")
MODIFIER_INTENTS = frozenset({IntentType.SEND, IntentType.UNKNOWN})

_FASTEST_RE = re.compile(r"\b(?:fastest|highest\s+fee|max(?:imum)?\s+(?:fee|speed|priority))\b")
_CHEAPEST_RE = re.compile(r"\b(?:cheapest|lowest\s+fee|min(?:imum)?\s+fee)\b")
_FASTER_RE = re.compile(
    r"\b(?:faster|quicker|speed\s+(?:it\s+)?up|(?:increase|raise)\s+(?:the\s+)?fee|higher\s+fee|more\s+fee)\b"
)
_SLOWER_RE = re.compile(
    r"\b(?:slower|cheaper|(?:lower|decrease|reduce)\s+(?:the\s+)?fee|less\s+fee|lower\s+priority)\b"
)
_DOUBLE_RE = re.compile(r"\b(?:double|twice)\b")

INSUFFICIENT_FUNDS_MESSAGE = (
    "Insufficient funds: you're trying to send {amount} plus a {fee} fee, "
    "but your balance is {balance}."
)
TESTNET_ADDRESS_MESSAGE = (
    "That looks like a testnet address. This wallet is on mainnet, so testnet addresses "
    "are not supported. Please send a mainnet address."
)
MAINNET_ADDRESS_MESSAGE = (
    "That is a mainnet address, but this wallet runs on testnet. Please send a testnet address."
)
INVALID_ADDRESS_MESSAGE = "That doesn't look like a valid Bitcoin address. Please double-check it."
INVALID_AMOUNT_MESSAGE = "That amount is too small to send. Please enter a larger amount."
NO_BALANCE_MESSAGE = "I can't see your balance right now, so please give an exact amount."
HESITATION_MESSAGE = "No problem, nothing has been sent. Say confirm when you're ready, or cancel to stop."
FIAT_UNCONVERTED_MESSAGE = (
    "I couldn't get a price to convert {currency} right now. Please give the amount in BTC or sats."
)

SEND_ERROR_MESSAGES = {
    "insufficient_funds": "The transaction failed: insufficient funds to cover the amount and fee.",
    "signing_failed": "The transaction failed: it could not be signed.",
    "network": "The transaction failed: the network could not be reached. Nothing was sent.",
    "invalid_address": "The transaction failed: the destination address was rejected.",
}


def short_address(address: str) -> str:
    """Shortened address for prompts: first 8 and last 6 characters."""
    if len(address) <= 16:
        return address
    return f"{address[:8]}...{address[-6:]}"


class ConversationFlow:
    """Decides what a message means for the active send flow."""

    def __init__(self, network: Optional[str] = None, typical_vsize: Optional[int] = None,
                 ask_fee_level: bool = False):
        self.network = (network or settings.bitcoin_network).lower()
        self.typical_vsize = typical_vsize or settings.typical_tx_vsize
        self.ask_fee_level = ask_fee_level
        self.state: FlowState = FlowState.idle()
        self._broadcast_started = False

    # Public API
    def decide(self, intent: WalletIntent, entities: Optional[ParsedEntity] = None, text: str = "",
               snapshot: Optional[WalletSnapshot] = None,
               fee_estimates: Optional[FeeEstimates] = None) -> FlowAction:
        """
        Decide the flow action for one classified message segment.

        Args:
            intent: Classified intent of the segment
            entities: Entities extracted from the segment, references merged in
            text: Segment text, used for modification phrases ("faster", "double")
            snapshot: Current wallet view for balance checks
            fee_estimates: Live fee rates; defaults apply when absent

        Returns:
            Exactly one FlowAction; ``self.state`` is updated to ``action.state``
        """
        entities = entities or ParsedEntity()
        estimates = fee_estimates or (snapshot.fee_estimates if snapshot else None) or FeeEstimates(
            **settings.fallback_fee_rates, is_fallback=True
        )
        kind = self.state.kind

        if kind == FlowStateKind.COMPLETED:
            self.state = FlowState.idle()
            kind = FlowStateKind.IDLE

        if kind == FlowStateKind.PROCESSING:
            action = self._decide_processing(intent)
        elif kind == FlowStateKind.AWAITING_CONFIRMATION:
            action = self._decide_confirmation(intent, entities, text, snapshot, estimates)
        elif self.state.is_awaiting_input:
            action = self._decide_awaiting(intent, entities, snapshot, estimates)
        else:
            action = self._decide_idle(intent, entities, snapshot, estimates)

        if action.state != self.state:
            logger.info(f"Flow {self.state.kind.value} -> {action.state.kind.value} ({action.kind.value})")
        self.state = action.state
        return action

    def begin_broadcast(self) -> Optional[PendingTransactionInfo]:
        """
        Move the confirmed draft to processing.

        Returns the draft exactly once; any later call for the same draft
        returns None so a duplicate confirmation cannot broadcast twice.
        """
        if self.state.kind != FlowStateKind.AWAITING_CONFIRMATION or self._broadcast_started:
            logger.warning(f"Broadcast requested in state {self.state.kind.value}; ignoring")
            return None
        pending = self.state.pending
        if pending is None:
            return None
        self._broadcast_started = True
        self.state = FlowState.processing(pending)
        return pending

    def complete(self, txid: str) -> SentTransaction:
        """Finish a broadcast; the returned record is what memory keeps."""
        if self.state.kind != FlowStateKind.PROCESSING or self.state.pending is None:
            raise FlowTransitionError(f"Cannot complete a send from state {self.state.kind.value}",
                                      state=self.state.kind.value)
        pending = self.state.pending
        self.state = FlowState.completed(txid, pending)
        self._broadcast_started = False
        logger.info(f"Send completed: {txid}")
        return SentTransaction(txid=txid, address=pending.address, amount=pending.amount, fee=pending.fee)

    def fail(self, reason: str) -> FlowState:
        if self.state.kind != FlowStateKind.PROCESSING:
            raise FlowTransitionError(f"Cannot fail a send from state {self.state.kind.value}",
                                      state=self.state.kind.value)
        self.state = FlowState.error(reason)
        self._broadcast_started = False
        logger.warning(f"Send failed: {reason}")
        return self.state

    def reset(self):
        self.state = FlowState.idle()
        self._broadcast_started = False

    @staticmethod
    def describe_send_error(exc: Exception) -> str:
        """User-facing text for a failed broadcast."""
        if isinstance(exc, BroadcastError):
            return SEND_ERROR_MESSAGES[exc.kind]
        message = str(exc).lower()
        if "insufficient" in message or "not enough" in message:
            return SEND_ERROR_MESSAGES["insufficient_funds"]
        if "sign" in message:
            return SEND_ERROR_MESSAGES["signing_failed"]
        if "address" in message:
            return SEND_ERROR_MESSAGES["invalid_address"]
        return SEND_ERROR_MESSAGES["network"]

    def resume_hint(self, state: Optional[FlowState] = None) -> Optional[str]:
        """One-line reminder of the paused send."""
        state = state or self.state
        if state.kind == FlowStateKind.AWAITING_ADDRESS:
            if state.amount is not None:
                return f"Still sending {AmountConverter.format_btc(state.amount)}. Where should it go?"
            return "Still working on your send. Which address should I send to?"
        if state.kind == FlowStateKind.AWAITING_AMOUNT and state.address:
            return f"Still sending to {short_address(state.address)}. How much?"
        if state.kind == FlowStateKind.AWAITING_FEE_LEVEL:
            return "Still waiting on a fee speed: slow, medium or fast?"
        if state.kind == FlowStateKind.AWAITING_CONFIRMATION and state.pending:
            pending = state.pending
            return (f"Your send of {AmountConverter.format_btc(pending.amount)} to "
                    f"{short_address(pending.address)} is waiting. Say confirm or cancel.")
        return None

    # Per-state decisions
    def _decide_idle(self, intent: WalletIntent, entities: ParsedEntity,
                     snapshot: Optional[WalletSnapshot], estimates: FeeEstimates) -> FlowAction:
        if intent.type == IntentType.SEND:
            return self._advance(intent.amount, intent.unit, intent.address, intent.fee_level,
                                 intent.fee_rate, intent.currency, snapshot, estimates)
        if intent.type == IntentType.CONFIRM_ACTION and self.state.kind == FlowStateKind.ERROR:
            return FlowAction(kind=FlowActionKind.IGNORED, state=self.state, intent=intent,
                              message="There's nothing waiting for confirmation.")
        if intent.type == IntentType.CANCEL_ACTION and self.state.kind == FlowStateKind.ERROR:
            return FlowAction(kind=FlowActionKind.CANCELLED, state=FlowState.idle(), intent=intent)
        return FlowAction(kind=FlowActionKind.HANDLE_NORMALLY, state=self.state, intent=intent)

    def _decide_processing(self, intent: WalletIntent) -> FlowAction:
        if intent.type == IntentType.CANCEL_ACTION:
            return FlowAction(kind=FlowActionKind.IGNORED, state=self.state, intent=intent,
                              message="The transaction has already been submitted and can't be cancelled.")
        if intent.type == IntentType.CONFIRM_ACTION:
            return FlowAction(kind=FlowActionKind.IGNORED, state=self.state, intent=intent,
                              message="That transaction is already being broadcast.")
        return FlowAction(kind=FlowActionKind.HANDLE_NORMALLY, state=self.state, intent=intent)

    def _decide_awaiting(self, intent: WalletIntent, entities: ParsedEntity,
                         snapshot: Optional[WalletSnapshot], estimates: FeeEstimates) -> FlowAction:
        state = self.state
        field = state.missing_field

        if intent.type == IntentType.CANCEL_ACTION:
            return self._cancel(intent)

        if intent.type == IntentType.SEND:
            return self._advance(
                intent.amount if intent.amount is not None else state.amount,
                intent.unit if intent.amount is not None else None,
                intent.address or state.address,
                intent.fee_level or state.fee_level,
                intent.fee_rate or state.fee_rate,
                intent.currency if intent.amount is not None else None,
                snapshot, estimates,
            )

        if intent.type in DATA_CARRIER_INTENTS and self._carries(field, entities, intent):
            return self._resume_with(entities, intent, snapshot, estimates)

        if intent.type == IntentType.CONFIRM_ACTION:
            return FlowAction(kind=FlowActionKind.IGNORED, state=state, intent=intent, field=field,
                              message=self._field_guidance(field))
        if intent.type == IntentType.HELP:
            return self._reprompt(intent, message=self._field_guidance(field))

        if intent.type in UNRELATED_INTENTS:
            return FlowAction(kind=FlowActionKind.PAUSE_AND_HANDLE, state=state, intent=intent,
                              field=field, resume_hint=self.resume_hint(state))

        if intent.type == IntentType.BUMP_FEE:
            return self._reprompt(intent, message="Let's finish or cancel this send first.")
        return self._reprompt(intent)

    def _decide_confirmation(self, intent: WalletIntent, entities: ParsedEntity, text: str,
                             snapshot: Optional[WalletSnapshot], estimates: FeeEstimates) -> FlowAction:
        state = self.state
        if intent.type == IntentType.CONFIRM_ACTION:
            if contains_negation(text):
                return self._reprompt(intent, message=HESITATION_MESSAGE)
            return FlowAction(kind=FlowActionKind.CONFIRM, state=state, intent=intent)

        is_modification = self._has_modification(intent, entities, text)
        if intent.type == IntentType.CANCEL_ACTION and not is_modification:
            return self._cancel(intent)
        if is_modification:
            return self._modify(intent, entities, text, snapshot, estimates)

        if intent.type == IntentType.HELP:
            return self._reprompt(intent, message=self._field_guidance("confirmation"))
        if intent.type in UNRELATED_INTENTS:
            return FlowAction(kind=FlowActionKind.PAUSE_AND_HANDLE, state=state, intent=intent,
                              field="confirmation", resume_hint=self.resume_hint(state))
        return self._reprompt(intent)

    # Transitions
    def _advance(self, amount: Optional[Decimal], unit, address: Optional[str],
                 fee_level: Optional[FeeLevel], fee_rate: Optional[int], currency: Optional[str],
                 snapshot: Optional[WalletSnapshot], estimates: FeeEstimates,
                 kind: FlowActionKind = FlowActionKind.ADVANCE) -> FlowAction:
        """Move the send as far forward as the known fields allow."""
        if fee_rate and fee_level is None:
            fee_level = FeeLevel.CUSTOM

        if address is not None:
            error = self._address_error(address)
            if error:
                keep = self._to_btc(amount, unit) if amount is not None and currency is None else None
                state = FlowState.awaiting_address(amount=keep, fee_level=fee_level, fee_rate=fee_rate)
                return FlowAction(kind=FlowActionKind.REPROMPT, state=state, field="address", message=error)

        if amount is not None and currency is not None:
            # Fiat amounts are converted before the flow sees them; this one could not be
            message = FIAT_UNCONVERTED_MESSAGE.format(currency=currency)
            if address is None:
                return FlowAction(kind=FlowActionKind.REPROMPT, field="address", message=message,
                                  state=FlowState.awaiting_address(fee_level=fee_level, fee_rate=fee_rate))
            return FlowAction(kind=FlowActionKind.REPROMPT, field="amount", message=message,
                              state=FlowState.awaiting_amount(address, fee_level, fee_rate))

        if address is None:
            btc = self._to_btc(amount, unit) if amount is not None else None
            state = FlowState.awaiting_address(amount=btc, fee_level=fee_level, fee_rate=fee_rate)
            return FlowAction(kind=kind, state=state, field="address")

        if amount is None:
            return FlowAction(kind=kind, state=FlowState.awaiting_amount(address, fee_level, fee_rate),
                              field="amount")

        if fee_level is None and self.ask_fee_level:
            btc = self._to_btc(amount, unit)
            return FlowAction(kind=kind, state=FlowState.awaiting_fee_level(btc, address), field="fee_level")

        level = fee_level or FeeLevel.MEDIUM
        pending, error = self._build_pending(self._to_btc(amount, unit), address, level, fee_rate,
                                             snapshot, estimates)
        if error:
            return FlowAction(kind=FlowActionKind.REPROMPT, field="amount", message=error,
                              state=FlowState.awaiting_amount(address, fee_level, fee_rate))
        return FlowAction(kind=kind, state=FlowState.awaiting_confirmation(pending), field="confirmation")

    def _resume_with(self, entities: ParsedEntity, intent: WalletIntent,
                     snapshot: Optional[WalletSnapshot], estimates: FeeEstimates) -> FlowAction:
        """Fill the awaited field from a data-carrying message."""
        state = self.state
        if state.kind == FlowStateKind.AWAITING_FEE_LEVEL:
            if intent.type == IntentType.CONFIRM_ACTION:
                level, rate = FeeLevel.MEDIUM, None
            else:
                level, rate = entities.fee_level, entities.fee_rate
                if rate and level is None:
                    level = FeeLevel.CUSTOM
            return self._advance(state.amount, None, state.address, level, rate, None, snapshot, estimates)

        amount, unit, currency = state.amount, None, None
        if entities.amount is not None:
            amount, unit = entities.amount, entities.unit
            currency = entities.currency if entities.fiat_amount else None
        address = entities.address or state.address
        return self._advance(amount, unit, address, entities.fee_level or state.fee_level,
                             entities.fee_rate or state.fee_rate, currency, snapshot, estimates)

    def _modify(self, intent: WalletIntent, entities: ParsedEntity, text: str,
                snapshot: Optional[WalletSnapshot], estimates: FeeEstimates) -> FlowAction:
        """Apply a change to the pending draft and re-enter confirmation."""
        pending = self.state.pending
        lower = normalize_for_matching(text)

        level, rate = pending.fee_level, pending.fee_rate if pending.fee_level == FeeLevel.CUSTOM else None
        if _FASTEST_RE.search(lower):
            level, rate = FeeLevel.FAST, None
        elif _CHEAPEST_RE.search(lower):
            level, rate = FeeLevel.SLOW, None
        elif _FASTER_RE.search(lower):
            level, rate = pending.fee_level.faster(), None
        elif _SLOWER_RE.search(lower):
            level, rate = pending.fee_level.slower(), None
        elif entities.fee_rate:
            level, rate = FeeLevel.CUSTOM, entities.fee_rate
        elif entities.fee_level and entities.fee_level != FeeLevel.CUSTOM:
            level, rate = entities.fee_level, None

        amount, unit, currency = pending.amount, None, None
        if entities.amount is not None and entities.amount > 0:
            amount, unit = entities.amount, entities.unit
            currency = entities.currency if entities.fiat_amount else None
        elif entities.is_entire_balance:
            amount = Decimal(-1)
        elif _DOUBLE_RE.search(lower):
            amount = pending.amount * 2
        elif entities.is_half_balance:
            # In a confirmation "half" scales the draft, not the balance
            amount = AmountConverter.quantize_btc(pending.amount / 2)

        address = entities.address or pending.address
        action = self._advance(amount, unit, address, level, rate, currency, snapshot, estimates,
                               kind=FlowActionKind.MODIFY_FLOW)
        if action.kind == FlowActionKind.REPROMPT:
            # Invalid change: keep the existing draft
            return FlowAction(kind=FlowActionKind.REPROMPT, state=self.state, intent=intent,
                              field="confirmation", message=action.message)
        return action.model_copy(update={"intent": intent})

    def _cancel(self, intent: WalletIntent) -> FlowAction:
        self._broadcast_started = False
        return FlowAction(kind=FlowActionKind.CANCELLED, state=FlowState.idle(), intent=intent)

    def _reprompt(self, intent: WalletIntent, message: Optional[str] = None) -> FlowAction:
        return FlowAction(kind=FlowActionKind.REPROMPT, state=self.state, intent=intent,
                          field=self.state.missing_field, message=message)

    # Helpers
    def _build_pending(self, amount: Decimal, address: str, level: FeeLevel, fee_rate: Optional[int],
                       snapshot: Optional[WalletSnapshot], estimates: FeeEstimates
                       ) -> Tuple[Optional[PendingTransactionInfo], Optional[str]]:
        """Price the draft and check it against the balance."""
        rate = fee_rate if level == FeeLevel.CUSTOM and fee_rate else estimates.rate_for(level)
        if level == FeeLevel.CUSTOM and not fee_rate:
            level = FeeLevel.MEDIUM
        fee = AmountConverter.to_btc(rate * self.typical_vsize)
        balance = snapshot.balance if snapshot is not None else None

        if amount < 0:
            if balance is None:
                return None, NO_BALANCE_MESSAGE
            if amount == Decimal(-1):
                if balance - fee <= 0:
                    return None, self._insufficient(balance, fee, balance)
                amount = balance - fee
            else:
                amount = balance / 2

        amount = AmountConverter.quantize_btc(amount)
        if AmountConverter.to_sats(amount) < 1:
            return None, INVALID_AMOUNT_MESSAGE
        if balance is not None and amount + fee > balance:
            return None, self._insufficient(amount, fee, balance)

        pending = PendingTransactionInfo(address=address, amount=amount, fee_level=level,
                                         fee_rate=rate, fee=fee, estimated_minutes=level.estimated_minutes)
        return pending, None

    @staticmethod
    def _insufficient(amount: Decimal, fee: Decimal, balance: Decimal) -> str:
        return INSUFFICIENT_FUNDS_MESSAGE.format(amount=AmountConverter.format_btc(amount),
                                                 fee=AmountConverter.format_btc(fee),
                                                 balance=AmountConverter.format_btc(balance))

    def _address_error(self, address: str) -> Optional[str]:
        if not AddressValidator.is_valid(address):
            return INVALID_ADDRESS_MESSAGE
        if AddressValidator.matches_network(address, self.network):
            return None
        if AddressValidator.network(address) == "testnet":
            return TESTNET_ADDRESS_MESSAGE
        return MAINNET_ADDRESS_MESSAGE

    @staticmethod
    def _to_btc(amount: Decimal, unit) -> Decimal:
        # Sentinels pass through untouched
        if amount < 0 or unit is None:
            return amount
        return unit.to_btc(amount)

    @staticmethod
    def _carries(field: Optional[str], entities: ParsedEntity, intent: WalletIntent) -> bool:
        if intent.type == IntentType.CONVERT_AMOUNT and intent.unit is not None:
            # "how much is 0.01 BTC in EUR" is a question, not an answer
            return False
        if field == "fee_level":
            return (entities.fee_level is not None or entities.fee_rate is not None
                    or intent.type == IntentType.CONFIRM_ACTION)
        if intent.type == IntentType.FEE_ESTIMATE:
            return False
        if field == "address":
            return entities.address is not None
        if field == "amount":
            return entities.amount is not None
        return False

    @staticmethod
    def _has_modification(intent: WalletIntent, entities: ParsedEntity, text: str) -> bool:
        """True when a message in confirmation changes the draft instead of asking something else."""
        lower = normalize_for_matching(text)
        relative_fee = any(p.search(lower) for p in (_FASTEST_RE, _CHEAPEST_RE, _FASTER_RE, _SLOWER_RE))
        if intent.type == IntentType.CANCEL_ACTION:
            # "no, 0.02" edits; "cancel all" and "cancel, the fee is too high" still cancel
            return ((entities.amount is not None and entities.amount > 0) or entities.address is not None
                    or entities.fee_rate is not None or relative_fee)
        fee_change = relative_fee or entities.fee_level is not None or entities.fee_rate is not None
        if intent.type in (IntentType.FEE_ESTIMATE, IntentType.BUMP_FEE):
            return fee_change
        if intent.type not in MODIFIER_INTENTS:
            return False
        return (fee_change or _DOUBLE_RE.search(lower) is not None
                or entities.amount is not None or entities.address is not None)

    @staticmethod
    def _field_guidance(field: Optional[str]) -> str:
        return {
            "address": "I need the Bitcoin address to send to. Paste it here, or say cancel to stop.",
            "amount": "How much should I send? You can say 0.001 BTC, 50000 sats, $20, or all.",
            "fee_level": "Pick a fee speed: slow (about an hour), medium (about 20 minutes) or fast (about 10 minutes).",
            "confirmation": "Say confirm to send, cancel to stop, or change it, e.g. faster, slower, "
                            "or a new amount.",
        }.get(field or "", "Say cancel to stop the current send.")
