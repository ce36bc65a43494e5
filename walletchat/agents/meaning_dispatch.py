#!/usr/bin/env python3
"""
Meaning Dispatch Module
Maps a classified intent plus the flow controller's decision to a concrete
response. This is the only stage that awaits collaborators (price and fee
services); everything before it is synchronous.
"""

import csv
import io
from decimal import Decimal
from typing import Awaitable, Callable, Dict, Optional, Tuple

from walletchat.agents.conversation_memory import ConversationMemory
from walletchat.agents.pattern_classifier import PatternClassifier, SocialSignal
from walletchat.agents.response_handler import ResponseHandler
from walletchat.schemas.core import (
    BitcoinUnit, ClassificationResult, FeeEstimates, FlowAction, FlowActionKind, FlowState,
    FlowStateKind, IntentType, ResponseDirective, SentTransaction, ShownData, WalletIntent,
    WalletSnapshot
)
from walletchat.services.fee_service import FeeService
from walletchat.services.price_service import PriceService
from walletchat.utils.config import settings
from walletchat.utils.errors import PriceUnavailableError
from walletchat.utils.logger import get_logger

logger = get_logger("meaning_dispatch")

DEFAULT_HISTORY_COUNT = 5

Handler = Callable[["DispatchContext"], Awaitable[ResponseDirective]]


class DispatchContext:
    """Everything a handler may read for one segment."""

    def __init__(self, classified: ClassificationResult, action: FlowAction,
                 snapshot: WalletSnapshot, memory: Optional[ConversationMemory] = None):
        self.classified = classified
        self.action = action
        self.snapshot = snapshot
        self.memory = memory

    @property
    def intent(self) -> WalletIntent:
        return self.classified.intent

    @property
    def state(self) -> FlowState:
        return self.action.state


class MeaningDispatcher:
    """Turns (intent, flow action) into a ResponseDirective."""

    def __init__(self, price_service: Optional[PriceService] = None, fee_service: Optional[FeeService] = None,
                 responses: Optional[ResponseHandler] = None, classifier: Optional[PatternClassifier] = None):
        self.price_service = price_service
        self.fee_service = fee_service
        self.responses = responses or ResponseHandler()
        self.classifier = classifier or PatternClassifier()

        self.handlers: Dict[IntentType, Handler] = {
            IntentType.SEND: self._handle_send,
            IntentType.RECEIVE: self._handle_receive,
            IntentType.BALANCE: self._handle_balance,
            IntentType.HISTORY: self._handle_history,
            IntentType.FEE_ESTIMATE: self._handle_fee_estimate,
            IntentType.PRICE: self._handle_price,
            IntentType.CONVERT_AMOUNT: self._handle_convert,
            IntentType.TRANSACTION_DETAIL: self._handle_transaction_detail,
            IntentType.NEW_ADDRESS: self._handle_new_address,
            IntentType.WALLET_HEALTH: self._handle_wallet_health,
            IntentType.EXPORT_HISTORY: self._handle_export,
            IntentType.UTXO_LIST: self._handle_utxos,
            IntentType.BUMP_FEE: self._handle_bump_fee,
            IntentType.NETWORK_STATUS: self._handle_network,
            IntentType.SETTINGS: self._handle_settings,
            IntentType.HELP: self._handle_help,
            IntentType.ABOUT: self._handle_about,
            IntentType.CONFIRM_ACTION: self._handle_confirm,
            IntentType.CANCEL_ACTION: self._handle_cancel,
            IntentType.HIDE_BALANCE: self._handle_hide,
            IntentType.SHOW_BALANCE: self._handle_show,
            IntentType.REFRESH_WALLET: self._handle_refresh,
            IntentType.GREETING: self._handle_greeting,
            IntentType.EXPLAIN: self._handle_explain,
            IntentType.UNKNOWN: self._handle_unknown,
        }
        missing = [intent_type.value for intent_type in IntentType if intent_type not in self.handlers]
        if missing:
            raise ValueError(f"No dispatch handler for intent(s): {', '.join(missing)}")

    # Collaborator preparation
    async def prepare(self, classified: ClassificationResult, flow_state: FlowState,
                      snapshot: Optional[WalletSnapshot] = None
                      ) -> Tuple[ClassificationResult, Optional[FeeEstimates]]:
        """
        Fetch what the flow controller needs before it can decide.

        Fiat send amounts ("send $50 to ...") are converted to BTC and fee
        estimates are fetched whenever a draft may be priced.

        Returns:
            The classification (with converted amounts) and the live fee estimates or None
        """
        intent = classified.intent
        entities = classified.entities
        drafting = intent.type == IntentType.SEND or flow_state.is_in_flight

        wants_fiat_amount = (
            intent.type == IntentType.SEND
            or flow_state.kind in (FlowStateKind.AWAITING_AMOUNT, FlowStateKind.AWAITING_CONFIRMATION)
        )
        if wants_fiat_amount and entities.is_fiat and self.price_service is not None:
            try:
                btc = await self.price_service.convert_to_btc(entities.amount, entities.currency)
            except PriceUnavailableError as e:
                logger.error(f"Could not convert {entities.amount} {entities.currency}: {e}")
            else:
                logger.info(f"Converted {entities.amount} {entities.currency} to {btc} BTC")
                entities = entities.model_copy(update={"amount": btc, "unit": BitcoinUnit.BTC,
                                                       "fiat_amount": False})
                if intent.type == IntentType.SEND:
                    intent = WalletIntent.send(amount=btc, unit=BitcoinUnit.BTC, address=intent.address,
                                               fee_level=intent.fee_level, fee_rate=intent.fee_rate)
                classified = classified.model_copy(update={"intent": intent, "entities": entities})

        estimates = None
        if drafting and self.fee_service is not None:
            estimates = await self.fee_service.get_estimates()
        elif drafting and snapshot is not None:
            estimates = snapshot.fee_estimates
        return classified, estimates

    # Dispatch
    async def resolve(self, classified: ClassificationResult, action: FlowAction,
                      snapshot: Optional[WalletSnapshot] = None,
                      memory: Optional[ConversationMemory] = None) -> ResponseDirective:
        """Produce the response for one segment given the flow decision."""
        snapshot = snapshot or WalletSnapshot()
        context = DispatchContext(classified, action, snapshot, memory)
        kind = action.kind

        if kind in (FlowActionKind.ADVANCE, FlowActionKind.MODIFY_FLOW, FlowActionKind.REPROMPT):
            return self._flow_directive(context)
        if kind == FlowActionKind.CANCELLED:
            return self._directive("send_cancelled", self.responses.pick("cancelled"), context)
        if kind == FlowActionKind.IGNORED:
            text = action.message or self.responses.pick("nothing_to_confirm")
            return self._directive("ignored", text, context)
        if kind == FlowActionKind.CONFIRM:
            # Broadcasting belongs to the orchestrator; a bare confirm only restates the draft
            return self._flow_directive(context)

        directive = await self._handle(context)
        if kind == FlowActionKind.PAUSE_AND_HANDLE and action.resume_hint:
            directive = directive.model_copy(update={"text": f"{directive.text}\n\n{action.resume_hint}"})
        return directive

    async def _handle(self, context: DispatchContext) -> ResponseDirective:
        handler = self.handlers[context.intent.type]
        return await handler(context)

    def completed_directive(self, sent: SentTransaction, state: FlowState) -> ResponseDirective:
        return ResponseDirective(kind="send_completed", text=self.responses.format_send_success(sent),
                                 shown=ShownData(sent_transaction=sent), flow_state=state,
                                 data={"txid": sent.txid})

    def failed_directive(self, description: str, state: FlowState) -> ResponseDirective:
        """Failed send; ``state.reason`` keeps the collaborator's message verbatim."""
        return ResponseDirective(kind="send_failed", text=self.responses.format_send_failure(description),
                                 flow_state=state, data={"reason": state.reason})

    def _directive(self, kind: str, text: str, context: DispatchContext,
                   shown: Optional[ShownData] = None, **data) -> ResponseDirective:
        return ResponseDirective(kind=kind, text=text, shown=shown or ShownData(),
                                 flow_state=context.state, data=data)

    def _flow_directive(self, context: DispatchContext) -> ResponseDirective:
        action = context.action
        state = action.state
        parts = []
        if action.kind == FlowActionKind.MODIFY_FLOW:
            parts.append(self._modification_lead(context))
        if action.message:
            parts.append(action.message)

        if state.kind == FlowStateKind.AWAITING_CONFIRMATION and state.pending is not None:
            parts.append(self.responses.format_confirmation(state.pending))
            return ResponseDirective(kind="send_confirmation", text="\n".join(parts), flow_state=state,
                                     requires_confirmation=True,
                                     data={"pending": state.pending.model_dump(mode="json")})

        parts.append(self.responses.format_prompt(state.missing_field, state.address))
        return ResponseDirective(kind="send_prompt", text="\n".join(parts), flow_state=state,
                                 data={"field": state.missing_field})

    def _modification_lead(self, context: DispatchContext) -> str:
        previous = context.memory.current_flow_state.pending if context.memory else None
        current = context.state.pending
        if previous is not None and current is not None and previous.fee_rate != current.fee_rate:
            if current.fee_rate > previous.fee_rate:
                return self.responses.pick("fee_increase")
            return self.responses.pick("fee_decrease")
        return self.responses.pick("updated")

    def _unavailable(self, service: str, context: DispatchContext) -> ResponseDirective:
        return self._directive("unavailable", self.responses.pick("unavailable", service=service),
                               context, service=service)

    # Handlers
    async def _handle_send(self, context: DispatchContext) -> ResponseDirective:
        if context.state.kind == FlowStateKind.PROCESSING:
            return self._directive("send_busy", "A transaction is already being broadcast. "
                                   "Please wait for it to finish.", context)
        return self._flow_directive(context)

    async def _handle_receive(self, context: DispatchContext) -> ResponseDirective:
        address = context.snapshot.receive_address
        if not address:
            return self._directive("receive", "I don't have a receive address yet. "
                                   "Try refreshing the wallet.", context)
        return self._directive("receive", self.responses.format_receive(address), context,
                               shown=ShownData(receive_address=address), address=address)

    async def _handle_new_address(self, context: DispatchContext) -> ResponseDirective:
        address = context.snapshot.receive_address
        if not address:
            return self._directive("new_address", "I couldn't generate a new address right now.",
                                   context, request="new_address")
        return self._directive("new_address", self.responses.format_receive(address, new=True), context,
                               shown=ShownData(receive_address=address), address=address,
                               request="new_address")

    async def _handle_balance(self, context: DispatchContext) -> ResponseDirective:
        snapshot = context.snapshot
        currency = settings.default_fiat_currency
        price = await self._try_price(currency)
        fiat = snapshot.fiat_balance
        if fiat is None and price is not None:
            fiat = (snapshot.balance * price).quantize(Decimal("0.01"))
        text = self.responses.format_balance(snapshot, price, currency)
        shown = ShownData() if snapshot.balance_hidden else ShownData(balance=snapshot.balance, fiat_balance=fiat)
        return self._directive("balance", text, context, shown=shown)

    async def _handle_history(self, context: DispatchContext) -> ResponseDirective:
        count = context.intent.count or DEFAULT_HISTORY_COUNT
        transactions = context.snapshot.recent_transactions[:count]
        return self._directive("history", self.responses.format_history(transactions), context,
                               shown=ShownData(transactions=transactions))

    async def _handle_fee_estimate(self, context: DispatchContext) -> ResponseDirective:
        if self.fee_service is not None:
            estimates = await self.fee_service.get_estimates()
        else:
            estimates = context.snapshot.fee_estimates or FeeService.fallback()
        return self._directive("fee_estimate", self.responses.format_fee_estimates(estimates), context,
                               shown=ShownData(fee_estimates=estimates))

    async def _handle_price(self, context: DispatchContext) -> ResponseDirective:
        currency = (context.intent.currency or settings.default_fiat_currency).upper()
        price = await self._try_price(currency)
        if price is None:
            return self._unavailable("price", context)
        return self._directive("price", self.responses.format_price(price, currency), context,
                               price=str(price), currency=currency)

    async def _handle_convert(self, context: DispatchContext) -> ResponseDirective:
        intent = context.intent
        if self.price_service is None:
            return self._unavailable("price", context)
        try:
            if intent.unit is None:
                btc = await self.price_service.convert_to_btc(intent.amount, intent.currency)
                text = self.responses.format_fiat_to_btc(intent.amount, intent.currency, btc)
                return self._directive("convert_amount", text, context, btc=str(btc))
            btc = intent.unit.to_btc(intent.amount)
            value = await self.price_service.convert_from_btc(btc, intent.currency)
            text = self.responses.format_btc_to_fiat(btc, intent.currency, value)
            return self._directive("convert_amount", text, context, fiat=str(value))
        except PriceUnavailableError as e:
            logger.error(f"Conversion failed: {e}")
            return self._unavailable("price", context)

    async def _handle_transaction_detail(self, context: DispatchContext) -> ResponseDirective:
        txid = context.intent.txid
        candidates = list(context.snapshot.recent_transactions)
        if context.memory and context.memory.last_shown_transactions:
            candidates += context.memory.last_shown_transactions
        tx = next((t for t in candidates if t.txid == txid), None)
        if tx is None:
            return self._directive("transaction_detail",
                                   f"I couldn't find transaction {txid[:12]}... in this wallet.", context)
        return self._directive("transaction_detail", self.responses.format_transaction_detail(tx), context,
                               txid=tx.txid)

    async def _handle_wallet_health(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("wallet_health", self.responses.format_wallet_health(context.snapshot), context)

    async def _handle_export(self, context: DispatchContext) -> ResponseDirective:
        transactions = context.snapshot.recent_transactions
        if not transactions:
            return self._directive("export_history", "There are no transactions to export yet.", context)
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        writer.writerow(["txid", "direction", "amount_btc", "confirmations", "timestamp"])
        for tx in transactions:
            writer.writerow([tx.txid, tx.direction, str(tx.amount), tx.confirmations, tx.timestamp.isoformat()])
        return self._directive("export_history", f"Exported {len(transactions)} transactions as CSV.",
                               context, csv=buffer.getvalue())

    async def _handle_utxos(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("utxo_list", self.responses.format_utxos(context.snapshot), context)

    async def _handle_bump_fee(self, context: DispatchContext) -> ResponseDirective:
        txid = context.intent.txid
        pending = [tx for tx in context.snapshot.recent_transactions if tx.is_pending and tx.direction == "sent"]
        tx = next((t for t in pending if t.txid == txid), None) if txid else (pending[0] if pending else None)
        if tx is None:
            return self._directive("bump_fee", "There's no unconfirmed outgoing transaction to speed up.", context)
        if self.fee_service is not None:
            estimates = await self.fee_service.get_estimates()
        else:
            estimates = context.snapshot.fee_estimates or FeeService.fallback()
        text = (f"Transaction {tx.txid[:12]}... is still unconfirmed. The fast rate right now is "
                f"{estimates.fast} sat/vB; I can replace it at that rate (RBF).")
        return self._directive("bump_fee", text, context, shown=ShownData(fee_estimates=estimates),
                               txid=tx.txid, fee_rate=estimates.fast)

    async def _handle_network(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("network_status", self.responses.format_network(context.snapshot), context)

    async def _handle_settings(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("settings", self.responses.format_settings(), context)

    async def _handle_help(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("help", self.responses.format_help(), context)

    async def _handle_about(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("about", self.responses.format_about(), context)

    async def _handle_confirm(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("confirm_action", self.responses.pick("nothing_to_confirm"), context)

    async def _handle_cancel(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("cancel_action", self.responses.pick("nothing_to_cancel"), context)

    async def _handle_hide(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("hide_balance", "Balance hidden. Say **show balance** to reveal it.",
                               context, balance_hidden=True)

    async def _handle_show(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("show_balance", "Balance visible again.", context, balance_hidden=False)

    async def _handle_refresh(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("refresh_wallet", "Refreshing your wallet...", context, request="refresh")

    async def _handle_greeting(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("greeting", self.responses.pick("greeting"), context)

    async def _handle_explain(self, context: DispatchContext) -> ResponseDirective:
        return self._directive("explain", self.responses.format_explain(context.intent.topic), context,
                               topic=context.intent.topic)

    async def _handle_unknown(self, context: DispatchContext) -> ResponseDirective:
        state = context.state
        if state.is_in_flight:
            # A send is open: ask for exactly what is missing
            return self._flow_directive(context)

        raw = context.intent.raw_text or context.classified.text
        signal = self.classifier.social_signal(raw)
        if signal == SocialSignal.GRATITUDE and context.memory and context.memory.last_sent_tx:
            since = context.memory.turns_since_last_send
            if since is not None and since <= 2:
                amount = self.responses.format_btc(context.memory.last_sent_tx.amount)
                return self._directive("social", f"You're welcome. Your {amount} send is on its way.",
                                       context, signal=signal.value)
        social = self.responses.format_social(signal)
        if social:
            return self._directive("social", social, context, signal=signal.value)

        scores = [s for s in context.classified.scores if s.intent != IntentType.UNKNOWN]
        if scores:
            return self._directive("unknown", self.responses.format_suggestion(scores[0].intent), context,
                                   suggestion=scores[0].intent.value)
        return self._directive("unknown", self.responses.pick("unknown"), context)

    async def _try_price(self, currency: str) -> Optional[Decimal]:
        if self.price_service is None:
            return None
        try:
            return await self.price_service.get_price(currency)
        except PriceUnavailableError as e:
            logger.error(f"Price unavailable for {currency}: {e}")
            return None
