#!/usr/bin/env python3
"""
molted: CLI for paying and reviewing Molted marketplace jobs

Usage:
    molted init --agent-id <id> --agent-name <name> [--wallet local|cdp] [--network base-sepolia]
    molted approve --job <job_id> [--reject] [--json]
    molted balance [--json]
"""

import argparse
import asyncio
import json as json_lib
import sys
from pathlib import Path
from typing import NoReturn, Optional

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from molted.buyer.api_client import ApiClient
from molted.buyer.orchestrator import PaymentOrchestrator
from molted.config import (
    ClientConfig,
    PersistedConfig,
    configure_logging,
    get_client_config,
    get_network_info,
    load_persisted_config,
    save_persisted_config,
)
from molted.errors import ExitCode, MoltedError, PaymentError, ValidationError
from molted.models import check_uuid
from molted.payments import format_base_units
from molted.payments.errors import MIN_ETH_FOR_GAS, format_eth_balance
from molted.wallet import create_wallet, create_wallet_from_config

console = Console()
err_console = Console(stderr=True)

logger = structlog.get_logger()


def handle_error(error: BaseException, json_output: bool = False) -> NoReturn:
    """Print an error with its remediation context and exit with its code"""
    exit_code = error.exit_code if isinstance(error, MoltedError) else ExitCode.GENERIC_ERROR
    message = error.message if isinstance(error, MoltedError) else str(error) or "An unknown error occurred"

    if json_output:
        data = {"error": message, "exit_code": int(exit_code)}
        if isinstance(error, PaymentError):
            data["code"] = error.code.value
            data["context"] = error.context.model_dump(exclude_none=True)
        if isinstance(error, ValidationError) and error.details:
            data["details"] = error.details
        print(json_lib.dumps(data, indent=2))
        sys.exit(exit_code)

    err_console.print(f"[red]Error:[/red] {message}")

    if isinstance(error, ValidationError):
        for field, errors in error.details.items():
            err_console.print(f"  {field}: {', '.join(errors)}")

    if isinstance(error, PaymentError):
        context = error.context
        rows = [
            ("Required", context.required),
            ("Available", context.available),
            ("Network", context.network),
            ("Chain ID", str(context.chain_id) if context.chain_id else None),
            ("Expected Chain ID", str(context.expected_chain_id) if context.expected_chain_id else None),
            ("TX Hash", context.tx_hash),
        ]
        for label, value in rows:
            if value:
                err_console.print(f"  [bold]{label}:[/bold] {value}")
        if context.next_step:
            err_console.print(f"\n[yellow]{context.next_step}[/yellow]")

    sys.exit(exit_code)


class MoltedCLI:
    """CLI wrapper around the payment orchestrator and wallet providers"""

    def __init__(self, json_output: bool = False, base_dir: Optional[Path] = None):
        self.json_output = json_output
        self.base_dir = base_dir
        self.client_config: ClientConfig = get_client_config()

    def _output(self, data: dict, human_message: str = None):
        """Output data in JSON or human-readable format"""
        if self.json_output:
            print(json_lib.dumps(data, indent=2, default=str))
        elif human_message:
            console.print(human_message)

    async def approve(self, job_id: str, reject: bool = False):
        """Approve (and pay for) or reject a job completion"""
        try:
            check_uuid(job_id)
        except ValueError:
            raise ValidationError("Invalid job ID format") from None

        config = load_persisted_config(self.base_dir)
        api = ApiClient(
            config.api_url,
            api_key=self.client_config.require_api_key(),
            timeout=self.client_config.http_timeout_seconds,
        )

        async def wallet_factory():
            return await create_wallet_from_config(config, self.client_config)

        orchestrator = PaymentOrchestrator(api, wallet_factory)

        try:
            if reject:
                with console.status("Rejecting completion...", spinner="dots"):
                    outcome = await orchestrator.reject(job_id)
                self._output(
                    outcome.model_dump(),
                    f"[green]✓[/green] Completion rejected.\n"
                    f"[bold]Job ID:[/bold] {job_id}\n"
                    f"[dim]No payment was processed.[/dim]"
                )
                return

            with console.status("Approving and paying...", spinner="dots"):
                outcome = await orchestrator.approve(job_id)
        finally:
            await api.close()

        if self.json_output:
            self._output(outcome.model_dump())
            return

        if outcome.already_settled:
            console.print(Panel(
                f"[bold]Job ID:[/bold] {job_id}\n"
                f"[bold]TX Hash:[/bold] {outcome.payment_tx_hash or 'N/A'}",
                title="Job already approved and paid",
                border_style="green"
            ))
            return

        amount = format_base_units(outcome.amount_units) if outcome.amount_units is not None else "?"
        lines = [
            f"[bold]Job ID:[/bold] {job_id}",
            f"[bold]Amount:[/bold] {amount} USDC",
            f"[bold]Paid To:[/bold] {outcome.paid_to}",
            f"[bold]TX Hash:[/bold] {outcome.payment_tx_hash}",
            f"[bold]Network:[/bold] {config.network}",
        ]
        if outcome.explorer_url:
            lines.append(f"\n[dim]View transaction: {outcome.explorer_url}[/dim]")
        console.print(Panel("\n".join(lines), title="Job approved and paid!", border_style="green"))

    async def balance(self):
        """Show wallet address and USDC / ETH balances"""
        config = load_persisted_config(self.base_dir)
        network = config.network_info

        with console.status("Fetching balances...", spinner="dots"):
            wallet = await create_wallet_from_config(config, self.client_config)
            usdc_balance = await wallet.get_usdc_balance()
            eth_balance = await wallet.get_eth_balance()

        if self.json_output:
            self._output({
                "address": wallet.address,
                "wallet_type": config.wallet_type,
                "network": network.name,
                "chain_id": network.chain_id,
                "usdc_balance": format_base_units(usdc_balance),
                "usdc_balance_units": usdc_balance,
                "eth_balance": format_eth_balance(eth_balance),
                "eth_balance_wei": eth_balance,
            })
            return

        table = Table(title="Wallet", show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Address", wallet.address)
        table.add_row("Type", config.wallet_type)
        table.add_row("Network", f"{network.display_name} (chainId: {network.chain_id})")
        table.add_row("USDC", f"[green]{format_base_units(usdc_balance)}[/green]")
        table.add_row("ETH (gas)", f"{format_eth_balance(eth_balance)}")
        console.print(table)

        needs_gas = wallet.requires_gas and eth_balance < MIN_ETH_FOR_GAS
        if usdc_balance == 0 or needs_gas:
            hints = []
            if needs_gas and network.eth_faucet:
                hints.append(f"Get test ETH (for gas fees): {network.eth_faucet}")
            if usdc_balance == 0 and network.usdc_faucet:
                hints.append(f"Get test USDC: {network.usdc_faucet}")
            hints.append(f"Send funds to: {wallet.address}")
            console.print(Panel(
                "\n".join(hints),
                title=f"Wallet needs funding on {network.display_name}",
                border_style="yellow"
            ))

    async def init(
        self,
        agent_id: str,
        agent_name: str,
        api_url: str,
        wallet_type: str = "local",
        network: str = "base-sepolia",
        force: bool = False,
    ):
        """Create the wallet and write .molted/config.json"""
        try:
            existing = load_persisted_config(self.base_dir)
        except MoltedError:
            existing = None

        if existing and not force:
            raise ValidationError(
                f"Already initialized as {existing.agent_name} ({existing.agent_id}). Use --force to overwrite."
            )

        api_key = self.client_config.require_api_key()
        network_info = get_network_info(network)

        with console.status(f"Setting up {wallet_type} wallet on {network_info.display_name}...", spinner="dots"):
            wallet = await create_wallet(wallet_type, network, self.client_config)

        config = PersistedConfig(
            api_url=api_url,
            agent_id=agent_id,
            agent_name=agent_name,
            api_key_prefix=api_key[:7],
            wallet_type=wallet_type,
            wallet_address=wallet.address,
            wallet_id=getattr(wallet, "wallet_id", None),
            network=network,
        )
        path = save_persisted_config(config, self.base_dir)

        self._output(
            {"config_path": str(path), **config.model_dump(exclude_none=True)},
            f"[green]✓[/green] Initialized {agent_name}\n"
            f"[bold]Wallet:[/bold] {wallet.address} ({wallet_type})\n"
            f"[bold]Network:[/bold] {network_info.display_name}\n"
            f"[dim]Config written to {path}[/dim]"
        )


def main(argv: Optional[list] = None):
    parser = argparse.ArgumentParser(
        prog="molted",
        description="Molted CLI - approve and pay for agent jobs with x402",
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output in JSON format (for scripting/agents)")
    parser.add_argument("--log-level", default="WARNING", help="Log level (DEBUG, INFO, WARNING, ERROR)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Init command
    init_parser = subparsers.add_parser("init", help="Set up a wallet and write .molted/config.json")
    init_parser.add_argument("--agent-id", required=True, help="Registered agent ID")
    init_parser.add_argument("--agent-name", required=True, help="Registered agent name")
    init_parser.add_argument("--api-url", default="http://localhost:3001", help="Marketplace API URL")
    init_parser.add_argument("--wallet", choices=["local", "cdp"], default="local", help="Wallet type")
    init_parser.add_argument("--network", choices=["base-sepolia", "base"], default="base-sepolia")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing config")

    # Approve command
    approve_parser = subparsers.add_parser("approve", help="Approve or reject a job completion")
    approve_parser.add_argument("--job", required=True, help="Job ID")
    approve_parser.add_argument("--reject", action="store_true", help="Reject the completion instead of approving")

    # Balance command
    subparsers.add_parser("balance", help="Show wallet balance")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(ExitCode.GENERIC_ERROR)

    configure_logging(args.log_level, "text")

    async def run():
        cli = MoltedCLI(json_output=args.json)
        if args.command == "init":
            await cli.init(
                agent_id=args.agent_id,
                agent_name=args.agent_name,
                api_url=args.api_url,
                wallet_type=args.wallet,
                network=args.network,
                force=args.force
            )
        elif args.command == "approve":
            await cli.approve(args.job, reject=args.reject)
        elif args.command == "balance":
            await cli.balance()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        err_console.print("[yellow]Interrupted[/yellow]")
        sys.exit(ExitCode.GENERIC_ERROR)
    except Exception as e:
        logger.debug("command_failed", command=args.command, error=str(e))
        handle_error(e, json_output=args.json)


if __name__ == "__main__":
    main()
