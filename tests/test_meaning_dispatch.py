#!/usr/bin/env python3
"""Meaning Dispatch Tests"""

import asyncio
import csv
import io
import random
from decimal import Decimal

import pytest

from conftest import MAINNET_ADDRESS, FixedPriceService
from walletchat.agents.conversation_memory import ConversationMemory
from walletchat.agents.meaning_dispatch import MeaningDispatcher
from walletchat.agents.response_handler import ResponseHandler
from walletchat.schemas.core import (
    BitcoinUnit, ClassificationResult, FeeLevel, FlowAction, FlowActionKind, FlowState, IntentScore,
    IntentType, ParsedEntity, PendingTransactionInfo, SentTransaction, ShownData, WalletIntent
)


def classified(intent, text="", entities=None, scores=None):
    return ClassificationResult(text=text or intent.type.value, intent=intent, confidence=0.9,
                                entities=entities or ParsedEntity(), scores=scores or [])


def normally():
    return FlowAction(kind=FlowActionKind.HANDLE_NORMALLY, state=FlowState.idle())


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def dispatcher():
    return MeaningDispatcher(price_service=FixedPriceService(), responses=ResponseHandler(random.Random(3)))


@pytest.fixture
def offline_dispatcher():
    return MeaningDispatcher(responses=ResponseHandler(random.Random(3)))


SAMPLE_INTENTS = [
    WalletIntent.send(),
    WalletIntent.simple(IntentType.RECEIVE),
    WalletIntent.simple(IntentType.BALANCE),
    WalletIntent.history(2),
    WalletIntent.simple(IntentType.FEE_ESTIMATE),
    WalletIntent.price("EUR"),
    WalletIntent.convert_amount(Decimal("100"), "USD"),
    WalletIntent.transaction_detail("bb" * 32),
    WalletIntent.simple(IntentType.NEW_ADDRESS),
    WalletIntent.simple(IntentType.WALLET_HEALTH),
    WalletIntent.simple(IntentType.EXPORT_HISTORY),
    WalletIntent.simple(IntentType.UTXO_LIST),
    WalletIntent.bump_fee(),
    WalletIntent.simple(IntentType.NETWORK_STATUS),
    WalletIntent.simple(IntentType.SETTINGS),
    WalletIntent.simple(IntentType.HELP),
    WalletIntent.simple(IntentType.ABOUT),
    WalletIntent.simple(IntentType.CONFIRM_ACTION),
    WalletIntent.simple(IntentType.CANCEL_ACTION),
    WalletIntent.simple(IntentType.HIDE_BALANCE),
    WalletIntent.simple(IntentType.SHOW_BALANCE),
    WalletIntent.simple(IntentType.REFRESH_WALLET),
    WalletIntent.simple(IntentType.GREETING),
    WalletIntent.explain("mempool"),
    WalletIntent.unknown("blorp zzz"),
]


class TestExhaustiveness:

    def test_every_intent_has_a_handler(self, dispatcher):
        assert set(dispatcher.handlers) == set(IntentType)

    def test_samples_cover_every_intent(self):
        assert {intent.type for intent in SAMPLE_INTENTS} == set(IntentType)

    @pytest.mark.parametrize("intent", SAMPLE_INTENTS, ids=lambda i: i.type.value)
    def test_every_intent_produces_a_reply(self, dispatcher, snapshot, intent):
        directive = run(dispatcher.resolve(classified(intent), normally(), snapshot))
        assert directive.text
        assert directive.kind


class TestWalletHandlers:

    def test_balance_with_price(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.simple(IntentType.BALANCE)),
                                           normally(), snapshot))
        assert directive.kind == "balance"
        assert "0.05 BTC" in directive.text
        assert "≈" in directive.text
        assert directive.shown.balance == Decimal("0.05")
        assert directive.shown.fiat_balance == Decimal("2500.00")

    def test_balance_without_price_service(self, offline_dispatcher, snapshot):
        directive = run(offline_dispatcher.resolve(classified(WalletIntent.simple(IntentType.BALANCE)),
                                                   normally(), snapshot))
        assert "≈" not in directive.text
        assert directive.shown.fiat_balance is None

    def test_hidden_balance_is_not_shown(self, dispatcher, snapshot):
        hidden = snapshot.model_copy(update={"balance_hidden": True})
        directive = run(dispatcher.resolve(classified(WalletIntent.simple(IntentType.BALANCE)),
                                           normally(), hidden))
        assert directive.shown.balance is None
        assert "hidden" in directive.text

    def test_history_limits_and_records_shown(self, dispatcher, snapshot, transactions):
        directive = run(dispatcher.resolve(classified(WalletIntent.history(2)), normally(), snapshot))
        assert directive.shown.transactions == transactions[:2]
        assert directive.text.startswith("Your last 2 transactions")

    def test_fee_estimate_uses_snapshot_without_service(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.simple(IntentType.FEE_ESTIMATE)),
                                           normally(), snapshot))
        assert directive.shown.fee_estimates.fast == 20
        assert "Fast: 20 sat/vB" in directive.text

    def test_price_in_requested_currency(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.price("eur")), normally(), snapshot))
        assert directive.kind == "price"
        assert directive.data == {"price": "40000", "currency": "EUR"}

    def test_price_unavailable(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.price("JPY")), normally(), snapshot))
        assert directive.kind == "unavailable"
        assert directive.data["service"] == "price"

    def test_convert_fiat_to_btc(self, dispatcher, snapshot):
        intent = WalletIntent.convert_amount(Decimal("100"), "USD")
        directive = run(dispatcher.resolve(classified(intent), normally(), snapshot))
        assert directive.data["btc"] == "0.00200000"
        assert "200,000 sats" in directive.text

    def test_convert_sats_to_fiat(self, dispatcher, snapshot):
        intent = WalletIntent.convert_amount(Decimal("100000"), "USD", unit=BitcoinUnit.SATS)
        directive = run(dispatcher.resolve(classified(intent), normally(), snapshot))
        assert directive.data["fiat"] == "50.00"

    def test_convert_without_price_service(self, offline_dispatcher, snapshot):
        intent = WalletIntent.convert_amount(Decimal("100"), "USD")
        directive = run(offline_dispatcher.resolve(classified(intent), normally(), snapshot))
        assert directive.kind == "unavailable"

    def test_transaction_detail(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.transaction_detail("bb" * 32)),
                                           normally(), snapshot))
        assert directive.data["txid"] == "bb" * 32
        assert "received" in directive.text

    def test_transaction_detail_not_found(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.transaction_detail("dd" * 32)),
                                           normally(), snapshot))
        assert "couldn't find" in directive.text

    def test_export_history_as_csv(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.simple(IntentType.EXPORT_HISTORY)),
                                           normally(), snapshot))
        rows = list(csv.reader(io.StringIO(directive.data["csv"])))
        assert rows[0] == ["txid", "direction", "amount_btc", "confirmations", "timestamp"]
        assert len(rows) == 4
        assert rows[1][0] == "aa" * 32

    def test_bump_fee_targets_pending_outgoing(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.bump_fee()), normally(), snapshot))
        assert directive.data == {"txid": "aa" * 32, "fee_rate": 20}

    def test_bump_fee_on_confirmed_tx(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.bump_fee("cc" * 32)), normally(), snapshot))
        assert "no unconfirmed" in directive.text
        assert "txid" not in directive.data

    def test_receive_records_shown_address(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.simple(IntentType.RECEIVE)),
                                           normally(), snapshot))
        assert directive.shown.receive_address == snapshot.receive_address

    def test_explain_topic(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.explain("mempool")), normally(), snapshot))
        assert "waiting room" in directive.text


class TestFlowDirectives:

    @pytest.fixture
    def pending(self):
        return PendingTransactionInfo(address=MAINNET_ADDRESS, amount=Decimal("0.01"), fee_level=FeeLevel.MEDIUM,
                                      fee_rate=10, fee=Decimal("0.0000141"), estimated_minutes=20)

    def test_advance_to_confirmation(self, dispatcher, snapshot, pending):
        action = FlowAction(kind=FlowActionKind.ADVANCE, state=FlowState.awaiting_confirmation(pending))
        directive = run(dispatcher.resolve(classified(WalletIntent.send()), action, snapshot))
        assert directive.kind == "send_confirmation"
        assert directive.requires_confirmation
        assert directive.data["pending"]["address"] == MAINNET_ADDRESS
        assert "bc1qar0s...wf5mdq" in directive.text

    def test_reprompt_asks_for_missing_field(self, dispatcher, snapshot):
        action = FlowAction(kind=FlowActionKind.REPROMPT, state=FlowState.awaiting_amount(MAINNET_ADDRESS))
        directive = run(dispatcher.resolve(classified(WalletIntent.send()), action, snapshot))
        assert directive.kind == "send_prompt"
        assert directive.data == {"field": "amount"}

    def test_cancelled(self, dispatcher, snapshot):
        action = FlowAction(kind=FlowActionKind.CANCELLED, state=FlowState.idle())
        directive = run(dispatcher.resolve(classified(WalletIntent.simple(IntentType.CANCEL_ACTION)),
                                           action, snapshot))
        assert directive.kind == "send_cancelled"

    def test_ignored_carries_message(self, dispatcher, snapshot):
        action = FlowAction(kind=FlowActionKind.IGNORED, state=FlowState.awaiting_address(),
                            message="I still need an address.")
        directive = run(dispatcher.resolve(classified(WalletIntent.simple(IntentType.CONFIRM_ACTION)),
                                           action, snapshot))
        assert directive.kind == "ignored"
        assert directive.text == "I still need an address."

    def test_pause_appends_resume_hint(self, dispatcher, snapshot, pending):
        state = FlowState.awaiting_confirmation(pending)
        action = FlowAction(kind=FlowActionKind.PAUSE_AND_HANDLE, state=state,
                            resume_hint="Your send is still waiting for confirmation.")
        directive = run(dispatcher.resolve(classified(WalletIntent.simple(IntentType.BALANCE)), action, snapshot))
        assert directive.kind == "balance"
        assert directive.text.endswith("\n\nYour send is still waiting for confirmation.")
        assert directive.flow_state == state

    def test_send_while_processing_is_busy(self, dispatcher, snapshot, pending):
        action = FlowAction(kind=FlowActionKind.HANDLE_NORMALLY, state=FlowState.processing(pending))
        directive = run(dispatcher.resolve(classified(WalletIntent.send()), action, snapshot))
        assert directive.kind == "send_busy"

    def test_unknown_during_flow_reprompts(self, dispatcher, snapshot):
        action = FlowAction(kind=FlowActionKind.HANDLE_NORMALLY, state=FlowState.awaiting_address(Decimal("0.01")))
        directive = run(dispatcher.resolve(classified(WalletIntent.unknown("hmm")), action, snapshot))
        assert directive.kind == "send_prompt"
        assert directive.data == {"field": "address"}

    def test_completed_and_failed_directives(self, dispatcher):
        sent = SentTransaction(txid="ef" * 32, address=MAINNET_ADDRESS, amount=Decimal("0.01"))
        completed = dispatcher.completed_directive(sent, FlowState.completed(sent.txid))
        assert completed.kind == "send_completed"
        assert completed.shown.sent_transaction == sent

        failed = dispatcher.failed_directive("Not enough funds", FlowState.error("Not enough funds"))
        assert failed.kind == "send_failed"
        assert failed.text == "❌ Not enough funds"
        assert failed.data == {"reason": "Not enough funds"}


class TestPrepare:

    def test_fiat_send_is_converted(self, dispatcher, snapshot):
        entities = ParsedEntity(amount=Decimal("50"), currency="USD", fiat_amount=True, address=MAINNET_ADDRESS)
        result = classified(WalletIntent.send(address=MAINNET_ADDRESS), entities=entities)
        converted, estimates = run(dispatcher.prepare(result, FlowState.idle(), snapshot))
        assert converted.intent.amount == Decimal("0.00100000")
        assert converted.intent.unit == BitcoinUnit.BTC
        assert not converted.entities.fiat_amount
        assert estimates == snapshot.fee_estimates

    def test_non_send_needs_no_estimates(self, dispatcher, snapshot):
        result = classified(WalletIntent.simple(IntentType.BALANCE))
        _, estimates = run(dispatcher.prepare(result, FlowState.idle(), snapshot))
        assert estimates is None


class TestUnknownAndSocial:

    def test_gratitude_after_send(self, dispatcher, snapshot):
        memory = ConversationMemory()
        sent = SentTransaction(txid="ef" * 32, address=MAINNET_ADDRESS, amount=Decimal("0.01"))
        memory.record_ai_response("sent", ShownData(sent_transaction=sent))
        memory.record_user_message("thanks")
        directive = run(dispatcher.resolve(classified(WalletIntent.unknown("thanks")), normally(),
                                           snapshot, memory))
        assert directive.kind == "social"
        assert "0.01 BTC" in directive.text

    def test_suggestion_from_best_non_unknown_score(self, dispatcher, snapshot):
        scores = [IntentScore(intent=IntentType.UNKNOWN, confidence=0.3),
                  IntentScore(intent=IntentType.FEE_ESTIMATE, confidence=0.4)]
        directive = run(dispatcher.resolve(classified(WalletIntent.unknown("blorp zzz"), scores=scores),
                                           normally(), snapshot))
        assert directive.kind == "unknown"
        assert directive.data == {"suggestion": "fee_estimate"}

    def test_plain_unknown(self, dispatcher, snapshot):
        directive = run(dispatcher.resolve(classified(WalletIntent.unknown("blorp zzz")), normally(), snapshot))
        assert directive.kind == "unknown"
        assert directive.data == {}
