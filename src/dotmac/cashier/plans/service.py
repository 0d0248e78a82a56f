"""
Plan registry.

Plans are registered with the processor first and stored locally once the
processor has accepted them.
"""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from dotmac.cashier.exceptions import DuplicatePlanError, PlanNotFoundError
from dotmac.cashier.plans.models import Plan
from dotmac.cashier.processor.base import PaymentProcessor
from dotmac.cashier.processor.schemas import PlanAttributes

logger = structlog.get_logger(__name__)


class PlanRegistry:
    """Registers and resolves plans."""

    def __init__(self, processor: PaymentProcessor) -> None:
        self.processor = processor

    async def register(self, session: AsyncSession, attributes: PlanAttributes) -> Plan:
        if await session.get(Plan, attributes.id) is not None:
            raise DuplicatePlanError(f"Plan {attributes.id} is already registered", plan_id=attributes.id)

        await self.processor.register_plan(attributes)

        plan = Plan.from_attributes(attributes)
        session.add(plan)
        await session.commit()
        logger.info(
            "Plan registered",
            plan_id=plan.id,
            amount=plan.amount,
            currency=plan.currency,
            interval=plan.interval,
        )
        return plan

    async def resolve(self, session: AsyncSession, plan_id: str) -> Plan:
        plan = await session.get(Plan, plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} is not registered", plan_id=plan_id)
        return plan

    async def find(self, session: AsyncSession, plan_id: str) -> Plan | None:
        return await session.get(Plan, plan_id)
