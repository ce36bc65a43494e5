#!/usr/bin/env python3
"""
Conversation Flow Tests
Send flow state machine: advancing, pausing, modifying, cancelling and the
broadcast handshake.
"""

from decimal import Decimal

import pytest

from conftest import MAINNET_ADDRESS, OTHER_MAINNET_ADDRESS, TESTNET_ADDRESS
from walletchat.agents.conversation_flow import (
    FIAT_UNCONVERTED_MESSAGE, SEND_ERROR_MESSAGES, TESTNET_ADDRESS_MESSAGE, ConversationFlow,
    short_address
)
from walletchat.schemas.core import (
    BitcoinUnit, FeeLevel, FlowActionKind, FlowStateKind, IntentType, ParsedEntity, WalletIntent
)
from walletchat.utils.errors import BroadcastError, FlowTransitionError


def send(amount=None, unit=BitcoinUnit.BTC, address=None, **kwargs):
    return WalletIntent.send(amount=Decimal(str(amount)) if amount is not None else None,
                             unit=unit if amount is not None else None, address=address, **kwargs)


@pytest.fixture
def flow():
    return ConversationFlow(network="mainnet", typical_vsize=140)


@pytest.fixture
def confirming(flow, snapshot):
    flow.decide(send("0.01", address=MAINNET_ADDRESS), snapshot=snapshot)
    assert flow.state.kind == FlowStateKind.AWAITING_CONFIRMATION
    return flow


class TestAdvance:

    def test_complete_send_goes_straight_to_confirmation(self, flow, snapshot):
        action = flow.decide(send("0.01", address=MAINNET_ADDRESS), snapshot=snapshot)
        assert action.kind == FlowActionKind.ADVANCE
        pending = action.state.pending
        assert pending.amount == Decimal("0.01")
        assert pending.fee_level == FeeLevel.MEDIUM
        assert pending.fee_rate == 10
        assert pending.fee == Decimal("0.00001400")
        assert flow.state == action.state

    def test_bare_send_asks_for_address(self, flow, snapshot):
        action = flow.decide(send(), snapshot=snapshot)
        assert action.kind == FlowActionKind.ADVANCE
        assert action.state.kind == FlowStateKind.AWAITING_ADDRESS
        assert action.field == "address"

    def test_address_then_amount(self, flow, snapshot):
        flow.decide(send(), snapshot=snapshot)
        action = flow.decide(WalletIntent.unknown(MAINNET_ADDRESS), ParsedEntity(address=MAINNET_ADDRESS),
                             snapshot=snapshot)
        assert action.state.kind == FlowStateKind.AWAITING_AMOUNT
        assert action.state.address == MAINNET_ADDRESS

        action = flow.decide(WalletIntent.unknown("50000 sats"),
                             ParsedEntity(amount=Decimal(50000), unit=BitcoinUnit.SATS), snapshot=snapshot)
        assert action.state.kind == FlowStateKind.AWAITING_CONFIRMATION
        assert action.state.pending.amount == Decimal("0.0005")

    def test_amount_is_kept_while_waiting_for_address(self, flow, snapshot):
        flow.decide(send("0.01"), snapshot=snapshot)
        assert flow.state.amount == Decimal("0.01")
        action = flow.decide(send(address=MAINNET_ADDRESS), snapshot=snapshot)
        assert action.state.pending.amount == Decimal("0.01")

    def test_send_all_deducts_fee(self, flow, snapshot):
        action = flow.decide(send("-1", address=MAINNET_ADDRESS), snapshot=snapshot)
        assert action.state.pending.amount == Decimal("0.049986")

    def test_custom_fee_rate(self, flow, snapshot):
        action = flow.decide(send("0.01", address=MAINNET_ADDRESS, fee_rate=3), snapshot=snapshot)
        pending = action.state.pending
        assert pending.fee_level == FeeLevel.CUSTOM
        assert pending.fee_rate == 3
        assert pending.fee == Decimal("0.00000420")

    def test_insufficient_funds_reprompts_for_amount(self, flow, snapshot):
        action = flow.decide(send("1", address=MAINNET_ADDRESS), snapshot=snapshot)
        assert action.kind == FlowActionKind.REPROMPT
        assert action.state.kind == FlowStateKind.AWAITING_AMOUNT
        assert action.message.startswith("Insufficient funds")

    def test_testnet_address_on_mainnet(self, flow, snapshot):
        action = flow.decide(send("0.01", address=TESTNET_ADDRESS), snapshot=snapshot)
        assert action.kind == FlowActionKind.REPROMPT
        assert action.message == TESTNET_ADDRESS_MESSAGE
        assert action.state.kind == FlowStateKind.AWAITING_ADDRESS
        assert action.state.amount == Decimal("0.01")

    def test_unconverted_fiat_amount(self, flow, snapshot):
        intent = WalletIntent.send(amount=Decimal(50), address=MAINNET_ADDRESS, currency="USD")
        action = flow.decide(intent, snapshot=snapshot)
        assert action.kind == FlowActionKind.REPROMPT
        assert action.state.kind == FlowStateKind.AWAITING_AMOUNT
        assert action.message == FIAT_UNCONVERTED_MESSAGE.format(currency="USD")

    def test_fee_level_step_when_enabled(self, snapshot):
        flow = ConversationFlow(network="mainnet", typical_vsize=140, ask_fee_level=True)
        action = flow.decide(send("0.01", address=MAINNET_ADDRESS), snapshot=snapshot)
        assert action.state.kind == FlowStateKind.AWAITING_FEE_LEVEL

        action = flow.decide(WalletIntent.unknown("fast"), ParsedEntity(fee_level=FeeLevel.FAST),
                             snapshot=snapshot)
        assert action.state.kind == FlowStateKind.AWAITING_CONFIRMATION
        assert action.state.pending.fee_rate == 20


class TestSideQuestions:

    def test_unrelated_intent_pauses_without_losing_state(self, flow, snapshot):
        flow.decide(send("0.01"), snapshot=snapshot)
        before = flow.state
        action = flow.decide(WalletIntent.simple(IntentType.BALANCE), snapshot=snapshot)
        assert action.kind == FlowActionKind.PAUSE_AND_HANDLE
        assert action.state == before
        assert action.resume_hint == "Still sending 0.01 BTC. Where should it go?"

    def test_confirm_while_awaiting_input_is_ignored(self, flow, snapshot):
        flow.decide(send(), snapshot=snapshot)
        action = flow.decide(WalletIntent.simple(IntentType.CONFIRM_ACTION), snapshot=snapshot)
        assert action.kind == FlowActionKind.IGNORED
        assert flow.state.kind == FlowStateKind.AWAITING_ADDRESS

    def test_conversion_question_is_not_an_answer(self, flow, snapshot):
        flow.decide(send(address=MAINNET_ADDRESS), snapshot=snapshot)
        intent = WalletIntent.convert_amount(Decimal("0.01"), "EUR", unit=BitcoinUnit.BTC)
        action = flow.decide(intent, ParsedEntity(amount=Decimal("0.01"), unit=BitcoinUnit.BTC), snapshot=snapshot)
        assert action.kind == FlowActionKind.PAUSE_AND_HANDLE
        assert flow.state.kind == FlowStateKind.AWAITING_AMOUNT

    def test_idle_intents_are_handled_normally(self, flow):
        action = flow.decide(WalletIntent.simple(IntentType.BALANCE))
        assert action.kind == FlowActionKind.HANDLE_NORMALLY
        assert action.state.is_idle


class TestConfirmation:

    def test_cancel(self, confirming):
        action = confirming.decide(WalletIntent.simple(IntentType.CANCEL_ACTION))
        assert action.kind == FlowActionKind.CANCELLED
        assert confirming.state.is_idle

    def test_faster(self, confirming, snapshot):
        action = confirming.decide(WalletIntent.unknown("faster"), ParsedEntity(fee_level=FeeLevel.FAST),
                                   "faster", snapshot)
        assert action.kind == FlowActionKind.MODIFY_FLOW
        assert action.state.pending.fee_level == FeeLevel.FAST
        assert action.state.pending.fee_rate == 20

    def test_new_amount(self, confirming, snapshot):
        entities = ParsedEntity(amount=Decimal("0.02"), unit=BitcoinUnit.BTC)
        action = confirming.decide(WalletIntent.unknown("make it 0.02"), entities, "make it 0.02", snapshot)
        assert action.kind == FlowActionKind.MODIFY_FLOW
        assert action.state.pending.amount == Decimal("0.02")

    def test_cancel_word_with_new_amount_modifies(self, confirming, snapshot):
        entities = ParsedEntity(amount=Decimal("0.02"), unit=BitcoinUnit.BTC)
        action = confirming.decide(WalletIntent.simple(IntentType.CANCEL_ACTION), entities,
                                   "no, make it 0.02", snapshot)
        assert action.kind == FlowActionKind.MODIFY_FLOW
        assert action.state.pending.amount == Decimal("0.02")

    @pytest.mark.parametrize("text,entities", [
        ("cancel all", ParsedEntity(amount=Decimal(-1), unit=BitcoinUnit.BTC)),
        ("no, stop everything", ParsedEntity(amount=Decimal(-1), unit=BitcoinUnit.BTC)),
        ("cancel, the fee is too high", ParsedEntity(fee_level=FeeLevel.FAST)),
    ])
    def test_cancel_with_sentinel_or_fee_word(self, confirming, snapshot, text, entities):
        action = confirming.decide(WalletIntent.simple(IntentType.CANCEL_ACTION), entities, text, snapshot)
        assert action.kind == FlowActionKind.CANCELLED
        assert confirming.state.is_idle

    def test_cancel_word_with_relative_fee_modifies(self, confirming, snapshot):
        action = confirming.decide(WalletIntent.simple(IntentType.CANCEL_ACTION), ParsedEntity(),
                                   "no, faster", snapshot)
        assert action.kind == FlowActionKind.MODIFY_FLOW
        assert action.state.pending.fee_level == FeeLevel.FAST

    def test_hesitant_confirm_reprompts(self, confirming, snapshot):
        before = confirming.state
        action = confirming.decide(WalletIntent.simple(IntentType.CONFIRM_ACTION), ParsedEntity(),
                                   "yes but not sure", snapshot)
        assert action.kind == FlowActionKind.REPROMPT
        assert confirming.state == before

    def test_half_scales_the_draft(self, confirming, snapshot):
        entities = ParsedEntity(amount=Decimal("-0.5"), unit=BitcoinUnit.BTC)
        action = confirming.decide(WalletIntent.unknown("half"), entities, "half", snapshot)
        assert action.state.pending.amount == Decimal("0.005")

    def test_double(self, confirming, snapshot):
        action = confirming.decide(WalletIntent.unknown("double it"), ParsedEntity(), "double it", snapshot)
        assert action.state.pending.amount == Decimal("0.02")

    def test_invalid_change_keeps_draft(self, confirming, snapshot):
        before = confirming.state
        entities = ParsedEntity(amount=Decimal(10), unit=BitcoinUnit.BTC)
        action = confirming.decide(WalletIntent.unknown("make it 10"), entities, "make it 10", snapshot)
        assert action.kind == FlowActionKind.REPROMPT
        assert confirming.state == before

    def test_new_address(self, confirming, snapshot):
        entities = ParsedEntity(address=OTHER_MAINNET_ADDRESS)
        action = confirming.decide(send(address=OTHER_MAINNET_ADDRESS), entities, "", snapshot)
        assert action.state.pending.address == OTHER_MAINNET_ADDRESS
        assert action.state.pending.amount == Decimal("0.01")

    def test_fee_question_pauses(self, confirming, snapshot):
        action = confirming.decide(WalletIntent.simple(IntentType.FEE_ESTIMATE), ParsedEntity(),
                                   "what are the fees", snapshot)
        assert action.kind == FlowActionKind.PAUSE_AND_HANDLE
        assert action.resume_hint.startswith("Your send of 0.01 BTC")


class TestBroadcastHandshake:

    def test_confirm_then_complete(self, confirming):
        action = confirming.decide(WalletIntent.simple(IntentType.CONFIRM_ACTION))
        assert action.kind == FlowActionKind.CONFIRM

        pending = confirming.begin_broadcast()
        assert pending is not None
        assert confirming.state.kind == FlowStateKind.PROCESSING
        assert confirming.begin_broadcast() is None

        sent = confirming.complete("ab" * 32)
        assert sent.amount == Decimal("0.01")
        assert sent.address == MAINNET_ADDRESS
        assert confirming.state.kind == FlowStateKind.COMPLETED

        # Completed falls back to idle on the next message
        action = confirming.decide(WalletIntent.simple(IntentType.BALANCE))
        assert action.kind == FlowActionKind.HANDLE_NORMALLY
        assert confirming.state.is_idle

    def test_processing_rejects_cancel_and_confirm(self, confirming):
        confirming.begin_broadcast()
        assert confirming.decide(WalletIntent.simple(IntentType.CANCEL_ACTION)).kind == FlowActionKind.IGNORED
        assert confirming.decide(WalletIntent.simple(IntentType.CONFIRM_ACTION)).kind == FlowActionKind.IGNORED
        assert confirming.state.kind == FlowStateKind.PROCESSING

    def test_fail_keeps_reason(self, confirming):
        confirming.begin_broadcast()
        state = confirming.fail("node said no")
        assert state.kind == FlowStateKind.ERROR
        assert state.reason == "node said no"

        assert confirming.decide(WalletIntent.simple(IntentType.CONFIRM_ACTION)).kind == FlowActionKind.IGNORED
        assert confirming.decide(WalletIntent.simple(IntentType.CANCEL_ACTION)).kind == FlowActionKind.CANCELLED
        assert confirming.state.is_idle

    def test_transitions_outside_processing_raise(self, flow):
        with pytest.raises(FlowTransitionError):
            flow.complete("ab" * 32)
        with pytest.raises(FlowTransitionError):
            flow.fail("nope")
        assert flow.begin_broadcast() is None


class TestHelpers:

    def test_describe_send_error(self):
        error = BroadcastError("utxo set too small", kind="insufficient_funds")
        assert ConversationFlow.describe_send_error(error) == SEND_ERROR_MESSAGES["insufficient_funds"]
        assert ConversationFlow.describe_send_error(RuntimeError("timeout")) == SEND_ERROR_MESSAGES["network"]
        assert ConversationFlow.describe_send_error(RuntimeError("could not sign")) == \
            SEND_ERROR_MESSAGES["signing_failed"]

    def test_short_address(self):
        assert short_address(MAINNET_ADDRESS) == "bc1qar0s...wf5mdq"
        assert short_address("short") == "short"
