"""Response handler: phrasing pools and display formatting for wallet replies."""

import random
from decimal import Decimal
from typing import Dict, List, Optional

from walletchat.agents.conversation_flow import short_address
from walletchat.agents.pattern_classifier import SocialSignal
from walletchat.schemas.core import (
    FeeEstimates, FeeLevel, IntentType, PendingTransactionInfo, SentTransaction,
    TransactionSummary, WalletSnapshot
)
from walletchat.utils.amount_converter import AmountConverter
from walletchat.utils.config import settings
from walletchat.utils.logger import get_logger

logger = get_logger("response_handler")

# Short explanations for the "explain" intent
EXPLANATIONS: Dict[str, str] = {
    "seed phrase": (
        "A seed phrase is a list of 12 or 24 words that can recreate your whole wallet. "
        "Write it down offline and never share it with anyone, including me."
    ),
    "private key": (
        "A private key is the secret number that signs your transactions. "
        "Whoever holds it controls the coins, so it never leaves your device."
    ),
    "blockchain": (
        "The blockchain is Bitcoin's public ledger: a chain of blocks, each one listing "
        "transactions and linked to the block before it."
    ),
    "halving": (
        "Roughly every four years (210,000 blocks) the reward miners get for a new block "
        "is cut in half. That's how Bitcoin's supply is capped at 21 million."
    ),
    "mempool": (
        "The mempool is the waiting room for unconfirmed transactions. Miners pick the "
        "ones paying the highest fee rate first, which is why fees rise when it's busy."
    ),
    "segwit": (
        "SegWit (addresses starting with bc1q) moves signature data out of the main "
        "transaction, which makes transactions smaller and cheaper."
    ),
    "taproot": (
        "Taproot (addresses starting with bc1p) is a 2021 upgrade that makes complex "
        "spending conditions look like ordinary payments and cheaper to use."
    ),
    "lightning": (
        "Lightning is a payment network on top of Bitcoin for instant, low-fee payments. "
        "This wallet sends on-chain transactions only."
    ),
    "utxo": (
        "A UTXO is an unspent transaction output, a coin your wallet can spend. "
        "Your balance is the sum of all your UTXOs."
    ),
    "mining": (
        "Miners bundle transactions into blocks and compete to find a valid one. "
        "The winner collects the block reward plus the fees."
    ),
    "bitcoin": (
        "Bitcoin is a decentralized digital currency with a fixed supply of 21 million. "
        "Payments are verified by a global network instead of a bank."
    ),
}

HELP_MENU = (
    "Here's what I can do:\n"
    "• **Balance**: \"what's my balance?\"\n"
    "• **Send**: \"send 0.001 BTC to bc1q...\"\n"
    "• **Receive**: \"show my address\" or \"new address\"\n"
    "• **History**: \"show my last 5 transactions\"\n"
    "• **Fees**: \"what are the fees?\"\n"
    "• **Price**: \"btc price in EUR\" or \"how much is $50 in BTC?\"\n"
    "• **Wallet**: health, UTXOs, network status, export history\n"
    "• **Learn**: \"what is a seed phrase?\""
)

SECURITY_WARNING = (
    "⚠️ That looks like a recovery phrase. Never share your seed words with anyone, "
    "not even me. I did not store that message. If you think someone has seen it, "
    "move your funds to a new wallet."
)


class ResponseHandler:
    """Picks phrasing from the response pools and formats wallet data."""

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

        self.responses: Dict[str, List[str]] = {
            "greeting": [
                "Hey! 👋 What can I do for your wallet today?",
                "Hello! Want to check your balance, send, or receive?",
                "Hi there! How can I help with your Bitcoin?",
                "Hey! I'm ready when you are.",
            ],
            "gratitude": [
                "Happy to help. Let me know if you need anything else.",
                "Anytime. I'm here whenever you need me.",
                "You're welcome. That's what I'm here for.",
                "No problem at all.",
            ],
            "affirmation": [
                "Glad to hear it. Anything else I can do?",
                "Great. Let me know if you need anything else.",
                "Nice. I'm here if you need me.",
            ],
            "frustration": [
                "I hear you. Let me help: can you tell me what went wrong?",
                "Sorry about that. Let's figure this out together.",
                "That's no good. Let me see what I can do to fix this.",
            ],
            "confusion": [
                "No problem. Try saying **help** to see everything I can do.",
                "Let me try explaining that differently. What part is unclear?",
                "No worries. Ask me anything and I'll do my best to clarify.",
            ],
            "humor": [
                "Ha, good one. But seriously, what can I help you with?",
                "You've got jokes. Alright, what do you need?",
            ],
            "sadness": [
                "I'm sorry to hear that. If you think your wallet is compromised, "
                "move the remaining funds to a fresh wallet as soon as you can.",
                "That's rough. If funds were stolen, start by securing what's left in a new wallet.",
            ],
            "excitement": [
                "Love the energy. What would you like to do?",
                "Right there with you. What's next?",
                "Let's make it happen. What do you need?",
            ],
            "ask_address": [
                "Where should I send it? Paste the Bitcoin address.",
                "What's the destination address?",
                "Sure. Which address should receive it?",
            ],
            "ask_amount": [
                "How much would you like to send to {address}?",
                "Got the address {address}. How much should I send?",
                "Sending to {address}. What amount?",
            ],
            "ask_fee_level": [
                "Which fee speed? slow (~60 min), medium (~20 min) or fast (~10 min).",
                "How fast should it confirm? slow, medium or fast?",
            ],
            "fee_increase": [
                "Switched to a faster fee.",
                "Bumped the fee for quicker confirmation.",
            ],
            "fee_decrease": [
                "Switched to a cheaper fee. It'll take a bit longer.",
                "Lowered the fee. Slower, but you'll pay less.",
            ],
            "updated": [
                "Updated.",
                "Done, here's the new version.",
                "Changed it.",
            ],
            "cancelled": [
                "Cancelled. Nothing was sent.",
                "No problem, I've cancelled that. Nothing was sent.",
                "Okay, send cancelled.",
            ],
            "nothing_to_cancel": [
                "There's nothing to cancel right now.",
                "Nothing is in progress, so there's nothing to cancel.",
            ],
            "nothing_to_confirm": [
                "There's nothing waiting for confirmation.",
                "Nothing to confirm right now. Want to send something?",
            ],
            "unavailable": [
                "I can't reach the {service} service right now. Please try again in a moment.",
                "The {service} service isn't responding. Try again shortly.",
            ],
            "unknown": [
                "I'm not sure what you mean. Try **help** to see what I can do.",
                "I didn't catch that. Say **help** for a list of commands.",
                "Hmm, I don't understand. Ask for **help** to see examples.",
            ],
        }

    def pick(self, category: str, **values) -> str:
        """Random entry from a pool, formatted with ``values``."""
        options = self.responses.get(category)
        if not options:
            logger.warning(f"No responses for category '{category}'")
            return ""
        return self.rng.choice(options).format(**values)

    # Formatting helpers
    @staticmethod
    def format_btc(amount: Decimal) -> str:
        return AmountConverter.format_btc(amount)

    @staticmethod
    def format_fiat(amount: Decimal, currency: str) -> str:
        return settings.format_fiat(amount, currency)

    # Wallet data
    def format_balance(self, snapshot: WalletSnapshot, price: Optional[Decimal] = None,
                       currency: Optional[str] = None) -> str:
        if snapshot.balance_hidden:
            return "Your balance is hidden. Say **show balance** to reveal it."
        text = f"💰 Your balance is **{self.format_btc(snapshot.balance)}**"
        if price is not None and currency:
            text += f" (≈ {self.format_fiat(snapshot.balance * price, currency)})"
        text += "."
        if snapshot.pending_balance:
            text += f"\nPending: {self.format_btc(snapshot.pending_balance)}"
        return text

    def format_fee_estimates(self, estimates: FeeEstimates) -> str:
        lines = ["Current network fees:"]
        for level in (FeeLevel.SLOW, FeeLevel.MEDIUM, FeeLevel.FAST):
            lines.append(f"• {level.value.title()}: {estimates.rate_for(level)} sat/vB "
                         f"(~{level.estimated_minutes} min)")
        if estimates.is_fallback:
            lines.append("Live fees are unavailable, these are typical rates.")
        return "\n".join(lines)

    def format_price(self, price: Decimal, currency: str) -> str:
        return f"1 BTC = **{self.format_fiat(price, currency)}**"

    def format_fiat_to_btc(self, amount: Decimal, currency: str, btc: Decimal) -> str:
        sats = AmountConverter.to_sats(btc)
        return (f"{self.format_fiat(amount, currency)} ≈ **{self.format_btc(btc)}** "
                f"({AmountConverter.format_sats(sats)})")

    def format_btc_to_fiat(self, btc: Decimal, currency: str, value: Decimal) -> str:
        return f"{self.format_btc(btc)} ≈ **{self.format_fiat(value, currency)}**"

    def format_history(self, transactions: List[TransactionSummary]) -> str:
        if not transactions:
            return "You don't have any transactions yet."
        lines = [f"Your last {len(transactions)} transaction{'s' if len(transactions) != 1 else ''}:"]
        for index, tx in enumerate(transactions, 1):
            arrow = "↑" if tx.direction == "sent" else "↓"
            status = "pending" if tx.is_pending else f"{tx.confirmations} conf"
            lines.append(f"{index}. {arrow} {self.format_btc(tx.amount)} ({status}) "
                         f"{tx.timestamp:%Y-%m-%d}")
        return "\n".join(lines)

    def format_transaction_detail(self, tx: TransactionSummary) -> str:
        lines = [
            f"Transaction {tx.txid[:12]}...{tx.txid[-6:]}",
            f"• Direction: {tx.direction}",
            f"• Amount: {self.format_btc(tx.amount)}",
            f"• Status: {'pending' if tx.is_pending else f'{tx.confirmations} confirmations'}",
            f"• Date: {tx.timestamp:%Y-%m-%d %H:%M}",
        ]
        if tx.address:
            lines.insert(3, f"• Address: {short_address(tx.address)}")
        return "\n".join(lines)

    @staticmethod
    def format_receive(address: str, new: bool = False) -> str:
        lead = "Here's a fresh address" if new else "Here's your receive address"
        return f"{lead}:\n`{address}`"

    def format_wallet_health(self, snapshot: WalletSnapshot) -> str:
        notes = [f"• Balance: {self.format_btc(snapshot.balance)}",
                 f"• UTXOs: {snapshot.utxo_count}"]
        if snapshot.utxo_count > 50:
            notes.append("• Many small coins: consolidating when fees are low would save on future sends.")
        pending = [tx for tx in snapshot.recent_transactions if tx.is_pending]
        if pending:
            notes.append(f"• {len(pending)} transaction(s) still unconfirmed.")
        notes.append("• Connected" if snapshot.is_connected else "• Offline: data may be stale")
        return "Wallet health:\n" + "\n".join(notes)

    def format_utxos(self, snapshot: WalletSnapshot) -> str:
        if snapshot.utxo_count == 0:
            return "Your wallet has no spendable coins (UTXOs) yet."
        return (f"Your wallet holds **{snapshot.utxo_count}** UTXO"
                f"{'s' if snapshot.utxo_count != 1 else ''} totalling {self.format_btc(snapshot.balance)}.")

    @staticmethod
    def format_network(snapshot: WalletSnapshot) -> str:
        status = "connected" if snapshot.is_connected else "disconnected"
        text = f"Network: **{snapshot.network}**, {status}."
        if snapshot.block_height:
            text += f"\nBlock height: {snapshot.block_height:,}"
        return text

    @staticmethod
    def format_explain(topic: Optional[str]) -> str:
        if topic and topic in EXPLANATIONS:
            return EXPLANATIONS[topic]
        return ("I can explain seed phrases, private keys, the mempool, fees, SegWit, Taproot, "
                "UTXOs, halving and more. What would you like to know?")

    @staticmethod
    def format_help() -> str:
        return HELP_MENU

    @staticmethod
    def format_about() -> str:
        return (f"{settings.app_name} v{settings.app_version}. I understand plain-language "
                "commands for your Bitcoin wallet. Your keys stay on your device.")

    @staticmethod
    def format_settings() -> str:
        return (f"Network: {settings.bitcoin_network}\n"
                f"Display currency: {settings.default_fiat_currency}\n"
                "You can change these in your configuration.")

    # Send flow
    def format_prompt(self, field: Optional[str], address: Optional[str] = None) -> str:
        """Question asking for the field the send flow is waiting on."""
        if field == "address":
            return self.pick("ask_address")
        if field == "amount":
            return self.pick("ask_amount", address=short_address(address) if address else "that address")
        if field == "fee_level":
            return self.pick("ask_fee_level")
        return "Say **confirm** to send or **cancel** to stop."

    def format_confirmation(self, pending: PendingTransactionInfo, price: Optional[Decimal] = None,
                            currency: Optional[str] = None) -> str:
        amount = self.format_btc(pending.amount)
        if price is not None and currency:
            amount += f" (≈ {self.format_fiat(pending.amount * price, currency)})"
        return (
            "Please confirm this send:\n"
            f"• To: {short_address(pending.address)}\n"
            f"• Amount: {amount}\n"
            f"• Fee: {self.format_btc(pending.fee)} ({pending.fee_rate} sat/vB, {pending.fee_level.value})\n"
            f"• Total: {self.format_btc(pending.total)}\n"
            f"• Estimated time: ~{pending.estimated_minutes} min\n"
            "Say **confirm** to send or **cancel** to stop."
        )

    def format_send_success(self, sent: SentTransaction) -> str:
        return (f"✅ Sent {self.format_btc(sent.amount)} to {short_address(sent.address)}.\n"
                f"Transaction ID: `{sent.txid}`")

    @staticmethod
    def format_send_failure(reason: str) -> str:
        return f"❌ {reason}"

    # Social and fallback
    def format_social(self, signal: SocialSignal) -> Optional[str]:
        if signal == SocialSignal.NEUTRAL:
            return None
        return self.pick(signal.value)

    def format_suggestion(self, intent_type: IntentType) -> str:
        label = intent_type.value.replace("_", " ")
        return f"I'm not quite sure. Did you mean **{label}**? You can also say **help**."

    @staticmethod
    def format_security_warning() -> str:
        return SECURITY_WARNING
