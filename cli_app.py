"""Interactive CLI for chatting with the WalletChat command engine."""

import argparse
import asyncio
import sys
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional

from rich.console import Console
from rich.table import Table
from rich.panel import Panel
from rich.text import Text
from rich import box

from walletchat.agents.wallet_agent import WalletChatAgent
from walletchat.schemas.core import (
    FeeEstimates, ResponseDirective, TransactionSummary, WalletSnapshot
)
from walletchat.services.broadcast_service import RecordingBroadcastService
from walletchat.services.fee_service import FeeService
from walletchat.services.price_service import PriceService
from walletchat.utils.config import settings
from walletchat.utils.conversation_store import ConversationStore
from walletchat.utils.logger import get_logger

logger = get_logger("cli_app")
console = Console()

DEMO_RECEIVE_ADDRESS = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"
DEMO_PEER_ADDRESS = "bc1qar0srrr7xfkvy5l643lydnw9re59gtzzwf5mdq"

EXIT_COMMANDS = ("exit", "quit", ":q")
RESET_COMMANDS = ("reset", ":reset")


def demo_snapshot() -> WalletSnapshot:
    """A small mainnet wallet to talk to when no node is attached."""
    now = datetime.now()
    transactions = [
        TransactionSummary(txid="a1" * 32, amount=Decimal("0.015"), direction="received",
                           address=DEMO_RECEIVE_ADDRESS, confirmations=142, timestamp=now - timedelta(days=6)),
        TransactionSummary(txid="b2" * 32, amount=Decimal("0.0025"), direction="sent",
                           address=DEMO_PEER_ADDRESS, confirmations=37, timestamp=now - timedelta(days=2)),
        TransactionSummary(txid="c3" * 32, amount=Decimal("0.0004"), direction="sent",
                           address=DEMO_PEER_ADDRESS, confirmations=0, timestamp=now - timedelta(minutes=25)),
    ]
    return WalletSnapshot(
        balance=Decimal("0.0121"),
        pending_balance=Decimal("0.0004"),
        utxo_count=3,
        fee_estimates=FeeEstimates(slow=6, medium=14, fast=28),
        receive_address=DEMO_RECEIVE_ADDRESS,
        recent_transactions=transactions,
        network=settings.bitcoin_network,
        block_height=865_000,
    )


class WalletChatCLI:
    """Interactive REPL around a WalletChatAgent."""

    def __init__(self, offline: bool = False):
        self.running = True
        self.snapshot = demo_snapshot()
        self.broadcaster = RecordingBroadcastService()
        self.store = ConversationStore()
        self.agent = WalletChatAgent(
            price_service=None if offline else PriceService(),
            fee_service=None if offline else FeeService(),
            broadcast_service=self.broadcaster,
            store=self.store,
            snapshot_provider=lambda: self.snapshot,
            conversation_id="cli",
        )

    def display_header(self):
        """Display application header."""
        header = Panel(
            Text(f"{settings.app_name} v{settings.app_version}", justify="center", style="bold blue"),
            box=box.DOUBLE,
            style="blue"
        )
        console.print(header)
        console.print(f"[dim]Network: {settings.bitcoin_network} | type 'help' for ideas, "
                      f"'reset' to start over, 'exit' to leave[/dim]")
        console.print()

    def display_error(self, message: str):
        """Display error message."""
        console.print(f"[bold red]Error:[/bold red] {message}")
        console.print()

    def display_info(self, message: str):
        """Display info message."""
        console.print(f"[bold blue]Info:[/bold blue] {message}")
        console.print()

    def fee_table(self, estimates: FeeEstimates) -> Table:
        title = "Fee Estimates (typical)" if estimates.is_fallback else "Fee Estimates"
        table = Table(title=title)
        table.add_column("Priority", style="cyan")
        table.add_column("Rate", style="green", justify="right")
        table.add_row("Fast", f"{estimates.fast} sat/vB")
        table.add_row("Medium", f"{estimates.medium} sat/vB")
        table.add_row("Slow", f"{estimates.slow} sat/vB")
        return table

    def transaction_table(self, transactions: List[TransactionSummary]) -> Table:
        table = Table(title="Transactions")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Date", style="cyan")
        table.add_column("Direction", style="white")
        table.add_column("Amount", style="green", justify="right")
        table.add_column("Confirmations", style="yellow", justify="right")
        table.add_column("Txid", style="dim")

        for index, tx in enumerate(transactions, 1):
            direction = "received" if tx.direction == "received" else "sent"
            table.add_row(str(index), tx.timestamp.strftime("%Y-%m-%d"), direction,
                          settings.format_btc(tx.amount), str(tx.confirmations), f"{tx.txid[:12]}...")
        return table

    def render(self, directive: ResponseDirective):
        """Print one reply and any structured data that came with it."""
        if directive.kind == "security_warning":
            console.print(Panel(directive.text, title="Security", title_align="left", border_style="red"))
            return
        if directive.kind in ("error", "send_failed"):
            self.display_error(directive.text)
            return

        style = "yellow" if directive.requires_confirmation else "green"
        if directive.kind == "send_completed":
            console.print(Panel(directive.text, title="Sent", title_align="left", border_style="green"))
        else:
            console.print(f"[bold {style}]Wallet:[/bold {style}] {directive.text}")

        shown = directive.shown
        if shown.fee_estimates is not None and directive.kind == "fee_estimate":
            console.print(self.fee_table(shown.fee_estimates))
        if shown.transactions and len(shown.transactions) > 1:
            console.print(self.transaction_table(shown.transactions))
        console.print()

    async def handle(self, text: str):
        try:
            directives = await self.agent.process_message(text)
        except Exception as e:
            logger.error(f"Error handling message: {e}")
            self.display_error(f"An unexpected error occurred: {e}")
            return
        for directive in directives:
            self.render(directive)

    async def run(self):
        """Read messages until the user leaves."""
        self.display_header()
        replayed = await self.agent.replay()
        if replayed:
            self.display_info(f"Restored {replayed} messages from earlier")

        while self.running:
            try:
                text = await asyncio.to_thread(input, "You: ")
            except EOFError:
                break
            text = text.strip()
            if not text:
                continue

            command = text.lower()
            if command in EXIT_COMMANDS:
                break
            if command in RESET_COMMANDS:
                await self.agent.reset_conversation()
                self.display_info("Conversation reset")
                continue

            await self.handle(text)

        self.running = False
        if self.broadcaster.call_count:
            self.display_info(f"{self.broadcaster.call_count} transaction(s) were broadcast in this demo session")
        self.store.mongodb.close()
        console.print("\n[bold green]Thanks for using WalletChat![/bold green]")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Chat with a demo Bitcoin wallet")
    parser.add_argument("--offline", action="store_true",
                        help="Don't call the price and fee services")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None):
    """Main entry point for CLI application."""
    args = parse_args(argv)
    try:
        cli = WalletChatCLI(offline=args.offline)
        asyncio.run(cli.run())
    except KeyboardInterrupt:
        console.print("\n[yellow]Application terminated by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        console.print(f"\n[red]Fatal error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
