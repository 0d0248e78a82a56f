#!/usr/bin/env python
"""
CLI management commands for the cashier.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import click

from dotmac.cashier.db import create_all_tables_async, get_session_maker
from dotmac.cashier.exceptions import BillingError
from dotmac.cashier.logging import setup_logging
from dotmac.cashier.plans.service import PlanRegistry
from dotmac.cashier.processor import PaymentProcessor, build_processor
from dotmac.cashier.processor.schemas import PlanAttributes, PlanInterval


class AsyncSessionManager(Protocol):
    async def __aenter__(self) -> Any: ...  # pragma: no cover - protocol definition
    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> Any: ...  # pragma: no cover


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    session_factory: Callable[[], AsyncSessionManager]
    create_tables: Callable[[], Awaitable[None]]
    processor_factory: Callable[[], PaymentProcessor]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    return CLIDependencies(
        session_factory=lambda: get_session_maker()(),
        create_tables=create_all_tables_async,
        processor_factory=build_processor,
    )


@click.group()
def cli() -> None:
    """Cashier subscription billing CLI."""
    setup_logging()


@cli.command()
def init_database() -> None:
    """Create the cashier tables."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    asyncio.run(deps.create_tables())
    click.echo("Database initialized successfully!")


@cli.command()
@click.option("--id", "plan_id", required=True, help="Plan identifier")
@click.option("--name", required=True, help="Display name")
@click.option("--amount", type=click.IntRange(min=0), required=True, help="Price in minor units")
@click.option("--currency", default="USD", show_default=True, help="ISO 4217 currency code")
@click.option(
    "--interval",
    type=click.Choice([interval.value for interval in PlanInterval]),
    default=PlanInterval.MONTH.value,
    show_default=True,
    help="Billing interval unit",
)
@click.option("--frequency", type=click.IntRange(min=1), default=1, show_default=True)
@click.option("--trial-days", type=click.IntRange(min=0), default=None, help="Default trial length")
@click.option("--expiry-count", type=click.IntRange(min=1), default=None, help="Billing cycles")
def register_plan(
    plan_id: str,
    name: str,
    amount: int,
    currency: str,
    interval: str,
    frequency: int,
    trial_days: int | None,
    expiry_count: int | None,
) -> None:
    """Register a plan with the processor and store it locally."""
    deps = _get_cli_dependencies()
    attributes = PlanAttributes(
        id=plan_id,
        name=name,
        amount=amount,
        currency=currency,
        interval=PlanInterval(interval),
        frequency=frequency,
        trial_period_days=trial_days,
        expiry_count=expiry_count,
    )

    async def _register() -> None:
        processor = deps.processor_factory()
        try:
            async with deps.session_factory() as session:
                plan = await PlanRegistry(processor).register(session, attributes)
                click.echo(f"Plan {plan.id} registered ({plan.amount} {plan.currency}/{plan.interval})")
        finally:
            await processor.close()

    try:
        asyncio.run(_register())
    except BillingError as e:
        raise click.ClickException(f"{e.error_code}: {e.message}") from e


if __name__ == "__main__":
    cli()
