"""
Core Pydantic schemas for the WalletChat command engine.
Provides type safety for entities, intents, flow state and collaborator payloads.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Dict, Any, List, Tuple
from pydantic import BaseModel, Field, model_validator

SATS_PER_BTC = Decimal("100000000")


# Units and fee levels
class BitcoinUnit(str, Enum):
    """Display scale of an amount. Not a type distinction."""
    BTC = "btc"
    SATS = "sats"
    SATOSHIS = "satoshis"

    @property
    def is_sats(self) -> bool:
        return self in (BitcoinUnit.SATS, BitcoinUnit.SATOSHIS)

    def to_btc(self, amount: Decimal) -> Decimal:
        """Convert an amount expressed in this unit to BTC."""
        if self.is_sats:
            return amount / SATS_PER_BTC
        return amount


class FeeLevel(str, Enum):
    SLOW = "slow"
    MEDIUM = "medium"
    FAST = "fast"
    CUSTOM = "custom"

    @property
    def estimated_minutes(self) -> int:
        return {"fast": 10, "medium": 20, "slow": 60}.get(self.value, 30)

    def faster(self) -> "FeeLevel":
        return {"slow": FeeLevel.MEDIUM, "medium": FeeLevel.FAST}.get(self.value, FeeLevel.FAST)

    def slower(self) -> "FeeLevel":
        return {"fast": FeeLevel.MEDIUM, "medium": FeeLevel.SLOW}.get(self.value, FeeLevel.SLOW)


# Entities
class ParsedEntity(BaseModel):
    """Structured values extracted from a single utterance.

    ``amount`` uses -1 as the "entire balance" sentinel and -0.5 for "half".
    """
    amount: Optional[Decimal] = None
    unit: Optional[BitcoinUnit] = None
    address: Optional[str] = None
    txid: Optional[str] = None
    count: Optional[int] = None
    fee_level: Optional[FeeLevel] = None
    fee_rate: Optional[int] = Field(None, description="Custom fee rate in sat/vB")
    currency: Optional[str] = Field(None, description="ISO 4217 code of a fiat amount or context")
    fiat_amount: bool = Field(False, description="True when amount is denominated in currency")
    label: Optional[str] = None
    message: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def is_empty(self) -> bool:
        return all(value is None or value is False for value in self.__dict__.values())

    @property
    def is_entire_balance(self) -> bool:
        return self.amount is not None and self.amount == Decimal(-1)

    @property
    def is_half_balance(self) -> bool:
        return self.amount is not None and self.amount == Decimal("-0.5")

    @property
    def is_fiat(self) -> bool:
        return self.fiat_amount and self.currency is not None and self.amount is not None

    @property
    def amount_btc(self) -> Optional[Decimal]:
        """Concrete BTC value of a crypto amount; None for sentinels and fiat."""
        if self.amount is None or self.amount <= 0 or self.fiat_amount:
            return None
        return (self.unit or BitcoinUnit.BTC).to_btc(self.amount)


# Intents
class IntentType(str, Enum):
    SEND = "send"
    RECEIVE = "receive"
    BALANCE = "balance"
    HISTORY = "history"
    FEE_ESTIMATE = "fee_estimate"
    PRICE = "price"
    CONVERT_AMOUNT = "convert_amount"
    TRANSACTION_DETAIL = "transaction_detail"
    NEW_ADDRESS = "new_address"
    WALLET_HEALTH = "wallet_health"
    EXPORT_HISTORY = "export_history"
    UTXO_LIST = "utxo_list"
    BUMP_FEE = "bump_fee"
    NETWORK_STATUS = "network_status"
    SETTINGS = "settings"
    HELP = "help"
    ABOUT = "about"
    CONFIRM_ACTION = "confirm_action"
    CANCEL_ACTION = "cancel_action"
    HIDE_BALANCE = "hide_balance"
    SHOW_BALANCE = "show_balance"
    REFRESH_WALLET = "refresh_wallet"
    GREETING = "greeting"
    EXPLAIN = "explain"
    UNKNOWN = "unknown"


PAYLOAD_FIELDS: Tuple[str, ...] = (
    "amount", "unit", "address", "fee_level", "fee_rate",
    "count", "currency", "txid", "topic", "raw_text",
)

# Payload each variant may carry, and the subset it must carry
INTENT_PAYLOADS: Dict[IntentType, Tuple[str, ...]] = {
    IntentType.SEND: ("amount", "unit", "address", "fee_level", "fee_rate", "currency"),
    IntentType.HISTORY: ("count",),
    IntentType.PRICE: ("currency",),
    IntentType.CONVERT_AMOUNT: ("amount", "currency", "unit"),
    IntentType.TRANSACTION_DETAIL: ("txid",),
    IntentType.BUMP_FEE: ("txid",),
    IntentType.EXPLAIN: ("topic",),
    IntentType.UNKNOWN: ("raw_text",),
}

INTENT_REQUIRED: Dict[IntentType, Tuple[str, ...]] = {
    IntentType.CONVERT_AMOUNT: ("amount", "currency"),
    IntentType.TRANSACTION_DETAIL: ("txid",),
    IntentType.UNKNOWN: ("raw_text",),
}

# Intents that move funds and therefore take over the conversation
ACTION_INTENTS = frozenset({IntentType.SEND, IntentType.BUMP_FEE})


class WalletIntent(BaseModel):
    """One discrete wallet operation from the closed intent set.

    A tagged union: ``type`` selects the variant and only that variant's
    payload fields may be set. Equality is structural.
    """
    type: IntentType
    amount: Optional[Decimal] = None
    unit: Optional[BitcoinUnit] = None
    address: Optional[str] = None
    fee_level: Optional[FeeLevel] = None
    fee_rate: Optional[int] = None
    count: Optional[int] = None
    currency: Optional[str] = None
    txid: Optional[str] = None
    topic: Optional[str] = None
    raw_text: Optional[str] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_payload(self):
        allowed = INTENT_PAYLOADS.get(self.type, ())
        for name in PAYLOAD_FIELDS:
            if name not in allowed and getattr(self, name) is not None:
                raise ValueError(f"{self.type.value} intent does not carry '{name}'")
        for name in INTENT_REQUIRED.get(self.type, ()):
            if getattr(self, name) is None:
                raise ValueError(f"{self.type.value} intent requires '{name}'")
        return self

    @property
    def is_action(self) -> bool:
        return self.type in ACTION_INTENTS

    @property
    def payload(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in INTENT_PAYLOADS.get(self.type, ())
                if getattr(self, name) is not None}

    # Variant constructors
    @classmethod
    def send(cls, amount: Optional[Decimal] = None, unit: Optional[BitcoinUnit] = None,
             address: Optional[str] = None, fee_level: Optional[FeeLevel] = None,
             fee_rate: Optional[int] = None, currency: Optional[str] = None) -> "WalletIntent":
        return cls(type=IntentType.SEND, amount=amount, unit=unit, address=address,
                   fee_level=fee_level, fee_rate=fee_rate, currency=currency)

    @classmethod
    def history(cls, count: Optional[int] = None) -> "WalletIntent":
        return cls(type=IntentType.HISTORY, count=count)

    @classmethod
    def price(cls, currency: Optional[str] = None) -> "WalletIntent":
        return cls(type=IntentType.PRICE, currency=currency)

    @classmethod
    def convert_amount(cls, amount: Decimal, currency: str,
                       unit: Optional[BitcoinUnit] = None) -> "WalletIntent":
        """Fiat amount to BTC when ``unit`` is None, otherwise a BTC/sats amount to ``currency``."""
        return cls(type=IntentType.CONVERT_AMOUNT, amount=amount, currency=currency, unit=unit)

    @classmethod
    def transaction_detail(cls, txid: str) -> "WalletIntent":
        return cls(type=IntentType.TRANSACTION_DETAIL, txid=txid)

    @classmethod
    def bump_fee(cls, txid: Optional[str] = None) -> "WalletIntent":
        return cls(type=IntentType.BUMP_FEE, txid=txid)

    @classmethod
    def explain(cls, topic: Optional[str] = None) -> "WalletIntent":
        return cls(type=IntentType.EXPLAIN, topic=topic)

    @classmethod
    def unknown(cls, raw_text: str) -> "WalletIntent":
        return cls(type=IntentType.UNKNOWN, raw_text=raw_text)

    @classmethod
    def simple(cls, intent_type: IntentType) -> "WalletIntent":
        """Build a payload-free variant (balance, receive, help, ...)."""
        return cls(type=intent_type)


class MatchStrength(Enum):
    """Coarse match quality, mapped once to a numeric confidence."""
    EXACT = 0.95
    STRONG = 0.85
    WEAK = 0.70

    @property
    def confidence(self) -> float:
        return float(self.value)


class IntentScore(BaseModel):
    """A scored candidate intent category with its provenance."""
    intent: IntentType
    confidence: float = Field(..., ge=0.0, le=1.0)
    source: str = Field(default="keyword", description="keyword, regex, fuzzy or fallback")

    model_config = {"frozen": True}


class ClassificationResult(BaseModel):
    """Output of classifying one segment."""
    text: str
    intent: WalletIntent
    confidence: float = 0.0
    scores: List[IntentScore] = Field(default_factory=list)
    entities: ParsedEntity = Field(default_factory=ParsedEntity)

    @property
    def intent_type(self) -> IntentType:
        return self.intent.type


class ResolvedReferences(BaseModel):
    """Values recovered from conversation memory for anaphora in one message."""
    address: Optional[str] = None
    amount: Optional[Decimal] = None
    unit: Optional[BitcoinUnit] = None
    txid: Optional[str] = None
    fee_level: Optional[FeeLevel] = None
    transaction: Optional["TransactionSummary"] = None
    transaction_index: Optional[int] = None
    repeat_intent: Optional[WalletIntent] = None
    relative_amount: bool = Field(False, description="amount was scaled from the last amount")
    is_modification: bool = False
    modification_entities: Optional[ParsedEntity] = None

    @property
    def has_any(self) -> bool:
        return any([self.address, self.amount is not None, self.txid, self.fee_level,
                    self.transaction, self.repeat_intent, self.is_modification])


# Wallet data shown to / read from the user
class TransactionSummary(BaseModel):
    """One wallet transaction as shown in a list."""
    txid: str
    amount: Decimal = Field(..., description="Amount in BTC")
    direction: str = Field(default="sent", description="sent or received")
    address: Optional[str] = None
    confirmations: int = 0
    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def is_pending(self) -> bool:
        return self.confirmations == 0


class FeeEstimates(BaseModel):
    """Fee rate triple in sat/vB."""
    slow: int = 8
    medium: int = 20
    fast: int = 40
    is_fallback: bool = False

    def rate_for(self, level: FeeLevel) -> int:
        if level == FeeLevel.FAST:
            return self.fast
        if level == FeeLevel.SLOW:
            return self.slow
        return self.medium


class SentTransaction(BaseModel):
    txid: str
    address: str
    amount: Decimal
    fee: Decimal = Decimal(0)
    timestamp: datetime = Field(default_factory=datetime.now)


class ShownData(BaseModel):
    """Explicit payload of what an assistant response displayed."""
    balance: Optional[Decimal] = None
    fiat_balance: Optional[Decimal] = None
    transactions: Optional[List[TransactionSummary]] = None
    fee_estimates: Optional[FeeEstimates] = None
    receive_address: Optional[str] = None
    sent_transaction: Optional[SentTransaction] = None


class WalletSnapshot(BaseModel):
    """Read-only view of wallet state supplied by the host application."""
    balance: Decimal = Decimal(0)
    pending_balance: Decimal = Decimal(0)
    fiat_balance: Optional[Decimal] = None
    utxo_count: int = 0
    fee_estimates: Optional[FeeEstimates] = None
    receive_address: Optional[str] = None
    recent_transactions: List[TransactionSummary] = Field(default_factory=list)
    network: str = "mainnet"
    block_height: Optional[int] = None
    is_connected: bool = True
    balance_hidden: bool = False


# Send flow
class PendingTransactionInfo(BaseModel):
    """Draft of a send awaiting confirmation."""
    address: str
    amount: Decimal = Field(..., description="Amount in BTC")
    fee_level: FeeLevel = FeeLevel.MEDIUM
    fee_rate: int = Field(..., description="Fee rate in sat/vB")
    fee: Decimal = Field(..., description="Absolute fee in BTC")
    estimated_minutes: int = 20

    model_config = {"frozen": True}

    @property
    def amount_sats(self) -> int:
        return int(self.amount * SATS_PER_BTC)

    @property
    def fee_sats(self) -> int:
        return int(self.fee * SATS_PER_BTC)

    @property
    def total(self) -> Decimal:
        return self.amount + self.fee


class FlowStateKind(str, Enum):
    IDLE = "idle"
    AWAITING_ADDRESS = "awaiting_address"
    AWAITING_AMOUNT = "awaiting_amount"
    AWAITING_FEE_LEVEL = "awaiting_fee_level"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


AWAITING_KINDS = frozenset({
    FlowStateKind.AWAITING_ADDRESS,
    FlowStateKind.AWAITING_AMOUNT,
    FlowStateKind.AWAITING_FEE_LEVEL,
})


class FlowState(BaseModel):
    """The single active multi-turn flow and the data gathered so far."""
    kind: FlowStateKind = FlowStateKind.IDLE
    amount: Optional[Decimal] = None
    address: Optional[str] = None
    fee_level: Optional[FeeLevel] = None
    fee_rate: Optional[int] = None
    pending: Optional[PendingTransactionInfo] = None
    reason: Optional[str] = None
    txid: Optional[str] = None

    model_config = {"frozen": True}

    @classmethod
    def idle(cls) -> "FlowState":
        return cls(kind=FlowStateKind.IDLE)

    @classmethod
    def awaiting_address(cls, amount: Optional[Decimal] = None, fee_level: Optional[FeeLevel] = None,
                         fee_rate: Optional[int] = None) -> "FlowState":
        return cls(kind=FlowStateKind.AWAITING_ADDRESS, amount=amount, fee_level=fee_level, fee_rate=fee_rate)

    @classmethod
    def awaiting_amount(cls, address: str, fee_level: Optional[FeeLevel] = None,
                        fee_rate: Optional[int] = None) -> "FlowState":
        return cls(kind=FlowStateKind.AWAITING_AMOUNT, address=address, fee_level=fee_level, fee_rate=fee_rate)

    @classmethod
    def awaiting_fee_level(cls, amount: Decimal, address: str) -> "FlowState":
        return cls(kind=FlowStateKind.AWAITING_FEE_LEVEL, amount=amount, address=address)

    @classmethod
    def awaiting_confirmation(cls, pending: PendingTransactionInfo) -> "FlowState":
        return cls(kind=FlowStateKind.AWAITING_CONFIRMATION, amount=pending.amount,
                   address=pending.address, fee_level=pending.fee_level,
                   fee_rate=pending.fee_rate, pending=pending)

    @classmethod
    def processing(cls, pending: PendingTransactionInfo) -> "FlowState":
        return cls(kind=FlowStateKind.PROCESSING, amount=pending.amount,
                   address=pending.address, pending=pending)

    @classmethod
    def completed(cls, txid: str, pending: Optional[PendingTransactionInfo] = None) -> "FlowState":
        return cls(kind=FlowStateKind.COMPLETED, txid=txid, pending=pending,
                   amount=pending.amount if pending else None,
                   address=pending.address if pending else None)

    @classmethod
    def error(cls, reason: str) -> "FlowState":
        return cls(kind=FlowStateKind.ERROR, reason=reason)

    @property
    def is_idle(self) -> bool:
        return self.kind == FlowStateKind.IDLE

    @property
    def is_awaiting_input(self) -> bool:
        return self.kind in AWAITING_KINDS

    @property
    def is_in_flight(self) -> bool:
        """A send is being assembled or confirmed."""
        return self.kind in AWAITING_KINDS or self.kind == FlowStateKind.AWAITING_CONFIRMATION

    @property
    def is_cancellable(self) -> bool:
        return self.kind not in (FlowStateKind.IDLE, FlowStateKind.COMPLETED, FlowStateKind.PROCESSING)

    @property
    def missing_field(self) -> Optional[str]:
        return {
            FlowStateKind.AWAITING_ADDRESS: "address",
            FlowStateKind.AWAITING_AMOUNT: "amount",
            FlowStateKind.AWAITING_FEE_LEVEL: "fee_level",
            FlowStateKind.AWAITING_CONFIRMATION: "confirmation",
        }.get(self.kind)


class FlowActionKind(str, Enum):
    ADVANCE = "advance"
    HANDLE_NORMALLY = "handle_normally"
    PAUSE_AND_HANDLE = "pause_and_handle"
    MODIFY_FLOW = "modify_flow"
    REPROMPT = "reprompt"
    CONFIRM = "confirm"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"
    IGNORED = "ignored"


class FlowAction(BaseModel):
    """Decision of the flow controller for one message."""
    kind: FlowActionKind
    state: FlowState
    intent: Optional[WalletIntent] = None
    field: Optional[str] = None
    message: Optional[str] = None
    resume_hint: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self.state.is_in_flight


# Dispatch output
class ResponseDirective(BaseModel):
    """Concrete result of handling one message segment."""
    kind: str
    text: str
    shown: ShownData = Field(default_factory=ShownData)
    flow_state: FlowState = Field(default_factory=FlowState.idle)
    requires_confirmation: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)


# Collaborator payloads
class BroadcastRequest(BaseModel):
    """Finalized send handed to the signing/broadcast collaborator."""
    address: str
    amount_sats: int = Field(..., gt=0)
    fee_rate: int = Field(..., gt=0)

    model_config = {"frozen": True}


class BroadcastResult(BaseModel):
    txid: str


# Conversation log
class ConversationTurn(BaseModel):
    """One immutable entry of the conversation log."""
    role: str = Field(..., description="user or assistant")
    text: str
    intent: Optional[WalletIntent] = None
    entities: ParsedEntity = Field(default_factory=ParsedEntity)
    timestamp: datetime = Field(default_factory=datetime.now)

    model_config = {"frozen": True}


class ConversationRecord(BaseModel):
    """Append-only persistence record."""
    conversation_id: str = Field(..., description="Conversation identifier")
    role: str = Field(..., description="Message role (user/assistant)")
    content: str = Field(..., description="Message content")
    intent_type: Optional[str] = Field(None, description="Classified intent type for user messages")
    timestamp: datetime = Field(default_factory=datetime.now)


ResolvedReferences.model_rebuild()
