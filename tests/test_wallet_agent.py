#!/usr/bin/env python3
"""WalletChat Agent Tests - full pipeline, collaborators stubbed"""

import asyncio
from decimal import Decimal

import pytest

from conftest import MAINNET_ADDRESS, FixedPriceService
from walletchat.agents.response_handler import SECURITY_WARNING
from walletchat.agents.wallet_agent import WalletChatAgent
from walletchat.schemas.core import FlowStateKind, IntentType
from walletchat.services.broadcast_service import RecordingBroadcastService
from walletchat.utils.conversation_store import ConversationStore
from walletchat.utils.errors import BroadcastError
from walletchat.utils.mongodb_manager import MongoDBManager

SEED_PHRASE = ("abandon ability able about above absent absorb abstract absurd abuse access accident")


class SlowBroadcastService(RecordingBroadcastService):
    """Takes a moment to answer, like a real node."""

    async def broadcast(self, request):
        await asyncio.sleep(0.05)
        return await super().broadcast(request)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store():
    return ConversationStore(mongodb=MongoDBManager(mongodb_url=""))


@pytest.fixture
def broadcaster():
    return RecordingBroadcastService()


@pytest.fixture
def agent(snapshot, broadcaster, store, rng):
    return WalletChatAgent(broadcast_service=broadcaster, store=store, snapshot_provider=lambda: snapshot,
                           rng=rng, conversation_id="test")


def send_message(agent, text):
    return run(agent.process_message(text))


class TestSendFlow:

    def test_send_and_confirm(self, agent, broadcaster):
        [draft] = send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        assert draft.kind == "send_confirmation"
        assert draft.requires_confirmation
        assert agent.flow.state.kind == FlowStateKind.AWAITING_CONFIRMATION

        [done] = send_message(agent, "confirm")
        assert done.kind == "send_completed"
        assert broadcaster.call_count == 1
        request = broadcaster.requests[0]
        assert request.address == MAINNET_ADDRESS
        assert request.amount_sats == 1_000_000
        assert request.fee_rate == 10
        assert agent.memory.last_sent_tx.txid == done.data["txid"]

    def test_duplicate_confirm_broadcasts_once(self, agent, broadcaster):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        send_message(agent, "confirm")
        [again] = send_message(agent, "confirm")
        assert again.kind != "send_completed"
        assert broadcaster.call_count == 1

    def test_concurrent_confirms_broadcast_once(self, snapshot, rng):
        broadcaster = SlowBroadcastService()
        agent = WalletChatAgent(broadcast_service=broadcaster, snapshot_provider=lambda: snapshot, rng=rng)
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")

        async def confirm_twice():
            return await asyncio.gather(agent.process_message("confirm"), agent.process_message("confirm"))

        first, second = run(confirm_twice())
        assert [d.kind for d in first + second].count("send_completed") == 1
        assert broadcaster.call_count == 1

    def test_hesitant_confirm_keeps_the_draft(self, agent, broadcaster):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        [held] = send_message(agent, "ok wait")
        assert held.kind == "send_confirmation"
        assert "nothing has been sent" in held.text
        assert agent.flow.state.kind == FlowStateKind.AWAITING_CONFIRMATION
        assert broadcaster.call_count == 0

    def test_address_asked_for_when_missing(self, agent):
        [prompt] = send_message(agent, "send 0.01 btc")
        assert prompt.kind == "send_prompt"
        assert prompt.data == {"field": "address"}

        [draft] = send_message(agent, MAINNET_ADDRESS)
        assert draft.kind == "send_confirmation"
        assert draft.flow_state.pending.amount == Decimal("0.01")

    def test_cancel_sends_nothing(self, agent, broadcaster):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        [cancelled] = send_message(agent, "cancel")
        assert cancelled.kind == "send_cancelled"
        assert agent.flow.state.is_idle
        assert broadcaster.call_count == 0

    @pytest.mark.parametrize("text", ["cancel all", "no, stop everything", "cancel, the fee is too high"])
    def test_cancel_with_sentinel_or_fee_word_still_cancels(self, agent, broadcaster, text):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        [cancelled] = send_message(agent, text)
        assert cancelled.kind == "send_cancelled"
        assert agent.flow.state.is_idle
        assert broadcaster.call_count == 0

    def test_cancel_word_with_new_amount_edits(self, agent):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        [draft] = send_message(agent, "no, 0.02")
        assert draft.kind == "send_confirmation"
        assert draft.flow_state.pending.amount == Decimal("0.02")

    def test_correction_replaces_the_draft_amount(self, agent):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        [draft] = send_message(agent, "the 0.01 was wrong, make it 0.02")
        assert draft.kind == "send_confirmation"
        assert draft.flow_state.pending.amount == Decimal("0.02")

    def test_correction_while_awaiting_amount(self, agent):
        [prompt] = send_message(agent, f"send to {MAINNET_ADDRESS}")
        assert prompt.data == {"field": "amount"}
        [draft] = send_message(agent, "actually, not 5000 sats, make it 8000 sats")
        assert draft.kind == "send_confirmation"
        assert draft.flow_state.pending.amount == Decimal("0.00008")

    def test_balance_question_pauses_the_send(self, agent):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        [reply] = send_message(agent, "what's my balance?")
        assert reply.kind == "balance"
        assert "waiting" in reply.text
        assert agent.flow.state.kind == FlowStateKind.AWAITING_CONFIRMATION

    def test_insufficient_funds_reprompts(self, agent):
        [reply] = send_message(agent, f"send 2 btc to {MAINNET_ADDRESS}")
        assert reply.kind == "send_prompt"
        assert "Insufficient funds" in reply.text
        assert agent.flow.state.kind == FlowStateKind.AWAITING_AMOUNT

    def test_same_address_reference(self, agent, broadcaster):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        send_message(agent, "confirm")
        [draft] = send_message(agent, "send 0.002 btc to the same address")
        assert draft.kind == "send_confirmation"
        assert draft.flow_state.pending.address == MAINNET_ADDRESS
        assert draft.flow_state.pending.amount == Decimal("0.002")


class TestBroadcastFailures:

    def test_failure_keeps_reason(self, snapshot, rng):
        error = BroadcastError("node rejected: insufficient funds", kind="insufficient_funds")
        agent = WalletChatAgent(broadcast_service=RecordingBroadcastService(fail_with=error),
                                snapshot_provider=lambda: snapshot, rng=rng)
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        [failed] = send_message(agent, "confirm")

        assert failed.kind == "send_failed"
        assert failed.text.startswith("❌ The transaction failed: insufficient funds")
        assert failed.data["reason"] == "node rejected: insufficient funds"
        assert agent.flow.state.kind == FlowStateKind.ERROR

    def test_no_broadcast_service(self, snapshot, rng):
        agent = WalletChatAgent(snapshot_provider=lambda: snapshot, rng=rng)
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        [failed] = send_message(agent, "confirm")
        assert failed.kind == "send_failed"
        assert failed.data["reason"] == "No signing service is configured"


class TestFollowUps:

    def test_currency_follow_up_after_price(self, snapshot, rng):
        agent = WalletChatAgent(price_service=FixedPriceService(), snapshot_provider=lambda: snapshot, rng=rng)
        [usd] = send_message(agent, "btc price")
        assert usd.data["currency"] == "USD"
        [eur] = send_message(agent, "and EUR?")
        assert eur.kind == "price"
        assert eur.data == {"price": "40000", "currency": "EUR"}

    def test_greeting_prefix_does_not_hide_a_send(self, agent):
        [draft] = send_message(agent, f"hey, send 0.01 btc to {MAINNET_ADDRESS}")
        assert draft.kind == "send_confirmation"


class TestGuardsAndCompound:

    def test_seed_phrase_is_blocked_and_not_stored(self, agent, store):
        [warning] = send_message(agent, SEED_PHRASE)
        assert warning.kind == "security_warning"
        assert warning.text == SECURITY_WARNING
        assert agent.memory.turn_count == 0
        assert run(store.load_history("test")) == []

    def test_compound_message_answers_each_part(self, agent):
        directives = send_message(agent, "check balance and show fees")
        assert [d.kind for d in directives] == ["balance", "fee_estimate"]
        assert agent.memory.last_shown_fee_estimates.fast == 20

    def test_history_then_ordinal(self, agent, transactions):
        send_message(agent, "show my last 3 transactions")
        [detail] = send_message(agent, "show the second one")
        assert detail.kind == "transaction_detail"
        assert detail.data["txid"] == transactions[1].txid


class TestPersistence:

    def test_messages_are_persisted(self, agent, store):
        send_message(agent, "what's my balance")
        records = run(store.load_history("test"))
        assert [r.role for r in records] == ["user", "assistant"]
        assert records[0].intent_type == IntentType.BALANCE.value

    def test_replay_rebuilds_memory_without_side_effects(self, snapshot, store, rng):
        first = WalletChatAgent(broadcast_service=RecordingBroadcastService(), store=store,
                                snapshot_provider=lambda: snapshot, rng=rng, conversation_id="test")
        send_message(first, f"send 0.01 btc to {MAINNET_ADDRESS}")

        broadcaster = RecordingBroadcastService()
        second = WalletChatAgent(broadcast_service=broadcaster, store=store,
                                 snapshot_provider=lambda: snapshot, rng=rng, conversation_id="test")
        assert run(second.replay()) == 2
        assert second.memory.last_address == MAINNET_ADDRESS
        assert second.memory.last_user_intent.type == IntentType.SEND
        assert second.flow.state.is_idle
        assert broadcaster.call_count == 0

    def test_reset_conversation(self, agent, store):
        send_message(agent, f"send 0.01 btc to {MAINNET_ADDRESS}")
        run(agent.reset_conversation())
        assert agent.flow.state.is_idle
        assert agent.memory.turn_count == 0
        # The persisted log is append-only
        assert len(run(store.load_history("test"))) == 2
