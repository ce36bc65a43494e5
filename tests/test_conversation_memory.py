#!/usr/bin/env python3
"""Conversation Memory Tests"""

from decimal import Decimal

from conftest import MAINNET_ADDRESS, OTHER_MAINNET_ADDRESS
from walletchat.agents.conversation_memory import (
    ASSISTANT, USER, ConversationMemory, contains_emoji, detect_language
)
from walletchat.schemas.core import (
    BitcoinUnit, FeeEstimates, FeeLevel, IntentType, ParsedEntity, SentTransaction, ShownData,
    WalletIntent
)


def test_user_turn_updates_last_mentioned():
    memory = ConversationMemory()
    entities = ParsedEntity(amount=Decimal(50000), unit=BitcoinUnit.SATS, address=MAINNET_ADDRESS,
                            fee_level=FeeLevel.FAST)
    memory.record_user_message("send 50000 sats fast", WalletIntent.send(address=MAINNET_ADDRESS), entities)

    assert memory.last_address == MAINNET_ADDRESS
    assert memory.last_amount == Decimal("0.0005")
    assert memory.last_fee_level == FeeLevel.FAST
    assert memory.last_user_intent.type == IntentType.SEND
    assert memory.turns[0].role == USER


def test_missing_entities_do_not_clear_previous_values():
    memory = ConversationMemory()
    memory.record_user_message("send to it", entities=ParsedEntity(address=MAINNET_ADDRESS))
    memory.record_user_message("what's my balance", WalletIntent.simple(IntentType.BALANCE))
    assert memory.last_address == MAINNET_ADDRESS


def test_sentinel_amounts_are_not_remembered():
    memory = ConversationMemory()
    memory.record_user_message("send all", entities=ParsedEntity(amount=Decimal(-1), unit=BitcoinUnit.BTC))
    assert memory.last_amount is None


def test_fiat_amounts_are_not_remembered_as_btc():
    memory = ConversationMemory()
    memory.record_user_message("send $50", entities=ParsedEntity(amount=Decimal(50), currency="USD",
                                                                 fiat_amount=True))
    assert memory.last_amount is None


def test_ai_response_updates_last_shown(transactions):
    memory = ConversationMemory()
    estimates = FeeEstimates(slow=3, medium=6, fast=9)
    memory.record_ai_response("here you go", ShownData(balance=Decimal("0.1"), transactions=transactions,
                                                       fee_estimates=estimates,
                                                       receive_address=OTHER_MAINNET_ADDRESS))
    assert memory.last_shown_balance == Decimal("0.1")
    assert memory.last_shown_transactions == transactions
    assert memory.last_shown_fee_estimates == estimates
    assert memory.last_shown_receive_address == OTHER_MAINNET_ADDRESS
    assert memory.last_address == OTHER_MAINNET_ADDRESS
    assert memory.last_ai_response == "here you go"
    assert memory.turns[-1].role == ASSISTANT


def test_text_alone_never_updates_last_shown():
    memory = ConversationMemory()
    memory.record_ai_response("Your balance is 0.5 BTC")
    assert memory.last_shown_balance is None


def test_sent_transaction_and_turns_since_send():
    memory = ConversationMemory()
    sent = SentTransaction(txid="ef" * 32, address=MAINNET_ADDRESS, amount=Decimal("0.01"))
    memory.record_user_message("confirm", WalletIntent.simple(IntentType.CONFIRM_ACTION))
    memory.record_ai_response("sent", ShownData(sent_transaction=sent))

    assert memory.last_sent_tx == sent
    assert memory.last_txid == sent.txid
    assert memory.last_amount == Decimal("0.01")
    assert memory.turns_since_last_send == 0

    memory.record_user_message("thanks")
    assert memory.turns_since_last_send == 1


def test_turn_log_is_read_only_view():
    memory = ConversationMemory()
    memory.record_user_message("hi")
    turns = memory.turns
    assert isinstance(turns, tuple)
    assert memory.turn_count == 1


def test_previous_user_intent():
    memory = ConversationMemory()
    memory.record_user_message("balance", WalletIntent.simple(IntentType.BALANCE))
    memory.record_ai_response("0.1 BTC")
    memory.record_user_message("fees", WalletIntent.simple(IntentType.FEE_ESTIMATE))
    assert memory.previous_user_intent.type == IntentType.BALANCE
    assert [t.text for t in memory.recent_turns(2)] == ["0.1 BTC", "fees"]


def test_behavior_signals():
    memory = ConversationMemory()
    memory.record_user_message("hola, cuánto tengo 🚀")
    assert memory.user_uses_emoji
    assert memory.user_language == "es"

    # No marker keeps the previous language
    memory.record_user_message("ok")
    assert memory.user_language == "es"
    assert memory.average_message_length == (len("hola, cuánto tengo 🚀") + 2) / 2


def test_reset_clears_everything():
    memory = ConversationMemory()
    memory.record_user_message("send", entities=ParsedEntity(address=MAINNET_ADDRESS))
    memory.reset()
    assert memory.turn_count == 0
    assert memory.last_address is None
    assert memory.current_flow_state.is_idle


def test_language_and_emoji_helpers():
    assert detect_language("مرحبا") == "ar"
    assert detect_language("bonjour") == "fr"
    assert detect_language("hello") is None
    assert contains_emoji("nice 👍")
    assert not contains_emoji("nice")
