#!/usr/bin/env python3
"""
WalletChat Agent
Main coordinator of the command pipeline. For every inbound message:

    segment -> resolve references -> extract -> classify -> prepare
            -> flow decision -> dispatch (or broadcast) -> record memory

Memory is written only after the whole message has been handled.
"""

import asyncio
import inspect
import random
from typing import Any, Callable, List, Optional, Tuple

from walletchat.agents.conversation_flow import ConversationFlow
from walletchat.agents.conversation_memory import ASSISTANT, USER, ConversationMemory
from walletchat.agents.entity_extractor import EntityExtractor
from walletchat.agents.meaning_dispatch import MeaningDispatcher
from walletchat.agents.multi_intent_segmenter import MultiIntentSegmenter
from walletchat.agents.pattern_classifier import PatternClassifier
from walletchat.agents.reference_resolver import ReferenceResolver
from walletchat.agents.response_handler import ResponseHandler
from walletchat.agents.security_guard import REDACTED, looks_like_seed_phrase
from walletchat.schemas.core import (
    BroadcastRequest, ClassificationResult, FlowAction, FlowActionKind, FlowStateKind,
    IntentType, MatchStrength, ResolvedReferences, ResponseDirective, WalletIntent, WalletSnapshot
)
from walletchat.services.broadcast_service import BroadcastService
from walletchat.services.fee_service import FeeService
from walletchat.services.price_service import PriceService
from walletchat.utils.config import settings
from walletchat.utils.conversation_store import ConversationStore
from walletchat.utils.logger import get_logger

logger = get_logger("wallet_agent")

SnapshotProvider = Callable[[], Any]

# Intents a bare "do it again" may be read as before the repeat is applied
_REPEATABLE_OVER = (IntentType.UNKNOWN, IntentType.CONFIRM_ACTION)
# Intents an ordinal reference ("show the second one") overrides
_ORDINAL_OVER = (IntentType.UNKNOWN, IntentType.SHOW_BALANCE, IntentType.HISTORY)

ERROR_RESPONSE = "Something went wrong on my side. Please try again."


class WalletChatAgent:
    """
    Coordinator for one conversation.

    Collaborators are injected; any of them may be None, in which case the
    matching replies degrade to "unavailable" (price), typical rates (fees)
    or a failed send (broadcast).
    """

    def __init__(self, price_service: Optional[PriceService] = None, fee_service: Optional[FeeService] = None,
                 broadcast_service: Optional[BroadcastService] = None, store: Optional[ConversationStore] = None,
                 snapshot_provider: Optional[SnapshotProvider] = None, rng: Optional[random.Random] = None,
                 conversation_id: str = "default", flow: Optional[ConversationFlow] = None):
        self.conversation_id = conversation_id
        self.broadcast_service = broadcast_service
        self.store = store
        self.snapshot_provider = snapshot_provider

        # Pipeline stages
        self.extractor = EntityExtractor()
        self.classifier = PatternClassifier(self.extractor)
        self.segmenter = MultiIntentSegmenter()
        self.resolver = ReferenceResolver(self.extractor)
        self.memory = ConversationMemory()
        self.flow = flow or ConversationFlow()
        self.dispatcher = MeaningDispatcher(price_service, fee_service, ResponseHandler(rng), self.classifier)

        # One pass at a time per conversation
        self._lock = asyncio.Lock()
        logger.info(f"✅ WalletChat agent ready for conversation {conversation_id}")

    async def process_message(self, text: str) -> List[ResponseDirective]:
        """
        Run the full pipeline for one user message.

        Args:
            text: Raw user message

        Returns:
            One ResponseDirective per handled segment
        """
        async with self._lock:
            if looks_like_seed_phrase(text):
                logger.warning(f"Blocked inbound message: {REDACTED}")
                return [ResponseDirective(kind="security_warning",
                                          text=self.dispatcher.responses.format_security_warning(),
                                          flow_state=self.flow.state)]

            snapshot = await self._snapshot()
            handled: List[Tuple[str, ClassificationResult, ResponseDirective]] = []
            for segment in self.segmenter.split_if_compound(text):
                try:
                    classified, directive = await self._process_segment(segment, snapshot)
                except Exception as e:
                    logger.error(f"Failed to process segment: {e}")
                    classified = self.classifier.classify(segment)
                    directive = ResponseDirective(kind="error", text=ERROR_RESPONSE, flow_state=self.flow.state)
                handled.append((segment, classified, directive))

            self._record(handled)
            await self._persist(text, handled)
            return [directive for _, _, directive in handled]

    async def _process_segment(self, segment: str, snapshot: WalletSnapshot
                               ) -> Tuple[ClassificationResult, ResponseDirective]:
        resolved = self.resolver.resolve(segment, self.memory)
        enriched = self.resolver.enrich_with_references(segment, resolved)
        entities = self.resolver.merge_entities(self.extractor.extract(enriched), resolved,
                                                in_flight=self.flow.state.is_in_flight)
        classified = self.classifier.classify(enriched, entities, last_intent=self.memory.last_user_intent)
        classified = self._apply_references(classified, resolved)

        classified, estimates = await self.dispatcher.prepare(classified, self.flow.state, snapshot)
        action = self.flow.decide(classified.intent, classified.entities, enriched, snapshot, estimates)
        logger.debug(f"Segment '{segment[:40]}': {classified.intent.type.value} -> {action.kind.value}")

        if action.kind == FlowActionKind.CONFIRM:
            return classified, await self._confirm_send(classified, snapshot)
        return classified, await self.dispatcher.resolve(classified, action, snapshot, self.memory)

    def _apply_references(self, classified: ClassificationResult, resolved: ResolvedReferences
                          ) -> ClassificationResult:
        """Let a resolved repeat or ordinal reference stand in for a weak classification."""
        intent_type = classified.intent.type
        repeat = resolved.repeat_intent
        if repeat is not None and self.flow.state.kind != FlowStateKind.AWAITING_CONFIRMATION:
            if intent_type in _REPEATABLE_OVER or (intent_type == repeat.type and not classified.intent.payload):
                logger.info(f"Repeating last intent: {repeat.type.value}")
                return classified.model_copy(update={"intent": repeat,
                                                     "confidence": MatchStrength.STRONG.confidence})

        if resolved.transaction is not None and intent_type in _ORDINAL_OVER:
            intent = WalletIntent.transaction_detail(resolved.transaction.txid)
            return classified.model_copy(update={"intent": intent, "confidence": MatchStrength.STRONG.confidence})
        return classified

    async def _confirm_send(self, classified: ClassificationResult, snapshot: WalletSnapshot) -> ResponseDirective:
        """Broadcast the confirmed draft exactly once."""
        pending = self.flow.begin_broadcast()
        if pending is None:
            action = FlowAction(kind=FlowActionKind.IGNORED, state=self.flow.state, intent=classified.intent,
                                message="That transaction is already being broadcast.")
            return await self.dispatcher.resolve(classified, action, snapshot, self.memory)

        if self.broadcast_service is None:
            state = self.flow.fail("No signing service is configured")
            return self.dispatcher.failed_directive("Sending isn't available right now. Nothing was sent.", state)

        request = BroadcastRequest(address=pending.address, amount_sats=pending.amount_sats,
                                   fee_rate=pending.fee_rate)
        try:
            result = await self.broadcast_service.broadcast(request)
        except Exception as e:
            logger.error(f"Broadcast failed: {e}")
            state = self.flow.fail(str(e))
            return self.dispatcher.failed_directive(self.flow.describe_send_error(e), state)

        sent = self.flow.complete(result.txid)
        return self.dispatcher.completed_directive(sent, self.flow.state)

    def _record(self, handled: List[Tuple[str, ClassificationResult, ResponseDirective]]):
        for segment, classified, directive in handled:
            self.memory.record_user_message(segment, classified.intent, classified.entities)
            self.memory.record_ai_response(directive.text, directive.shown)
        self.memory.current_flow_state = self.flow.state

    async def _persist(self, text: str, handled: List[Tuple[str, ClassificationResult, ResponseDirective]]):
        if self.store is None or not handled:
            return
        intent_type = handled[0][1].intent.type.value
        await self.store.save_message(self.conversation_id, USER, text, intent_type)
        reply = "\n\n".join(directive.text for _, _, directive in handled)
        await self.store.save_message(self.conversation_id, ASSISTANT, reply)

    async def _snapshot(self) -> WalletSnapshot:
        if self.snapshot_provider is None:
            return WalletSnapshot(network=settings.bitcoin_network)
        snapshot = self.snapshot_provider()
        if inspect.isawaitable(snapshot):
            snapshot = await snapshot
        return snapshot

    async def replay(self, conversation_id: Optional[str] = None) -> int:
        """
        Rebuild memory from persisted history.

        User messages are re-extracted and re-classified only: nothing is
        dispatched, no collaborator is called and the flow stays idle.

        Returns:
            Number of records replayed
        """
        if self.store is None:
            return 0
        records = await self.store.load_history(conversation_id or self.conversation_id)
        async with self._lock:
            self._reset()
            for record in records:
                if record.role == USER:
                    for segment in self.segmenter.split_if_compound(record.content):
                        entities = self.extractor.extract(segment)
                        classified = self.classifier.classify(segment, entities,
                                                              last_intent=self.memory.last_user_intent)
                        self.memory.record_user_message(segment, classified.intent, entities)
                else:
                    self.memory.record_ai_response(record.content)
        logger.info(f"Replayed {len(records)} records into memory")
        return len(records)

    async def reset_conversation(self):
        """Forget memory and any in-progress send."""
        async with self._lock:
            self._reset()

    def _reset(self):
        self.memory.reset()
        self.flow.reset()
        self.memory.current_flow_state = self.flow.state
