"""Cost-basis merge policy for holdings.

Priority (higher wins): manual > provider > calculated > unknown.
A locked cost basis is never replaced by any automated source.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from models.holding import COST_BASIS_SOURCE_PRIORITY

logger = logging.getLogger(__name__)

MANUAL = "manual"
PROVIDER = "provider"
CALCULATED = "calculated"


@dataclass(frozen=True)
class CostBasisDecision:
    """Outcome of a cost-basis reconciliation.

    ``cost_basis`` and ``cost_basis_source`` are the values the holding
    should carry afterwards; ``should_update`` says whether they differ
    from what is stored.
    """

    cost_basis: Decimal | None
    cost_basis_source: str | None
    should_update: bool


class CostBasisPolicy:
    """Decides whether an incoming cost basis replaces the stored one."""

    @staticmethod
    def _known(value) -> bool:
        return value is not None and Decimal(str(value)) > 0

    @staticmethod
    def reconcile(
        existing,
        incoming_cost_basis,
        incoming_source: str = PROVIDER,
    ) -> CostBasisDecision:
        """Merge ``incoming_cost_basis`` into ``existing`` (a Holding or None).

        Args:
            existing: The stored holding, or None for a new one
            incoming_cost_basis: Value reported by ``incoming_source``
            incoming_source: One of manual / provider / calculated

        Returns:
            CostBasisDecision
        """
        current_value = getattr(existing, "cost_basis", None)
        current_source = getattr(existing, "cost_basis_source", None)
        keep = CostBasisDecision(current_value, current_source, False)

        if existing is not None and existing.cost_basis_locked:
            return keep

        # A zero or missing provider value means "unknown", never "free"
        if not CostBasisPolicy._known(incoming_cost_basis):
            return keep

        incoming = Decimal(str(incoming_cost_basis))
        if current_value is not None and current_source == incoming_source:
            if Decimal(str(current_value)) == incoming:
                return keep

        current_priority = COST_BASIS_SOURCE_PRIORITY.get(current_source, 0)
        incoming_priority = COST_BASIS_SOURCE_PRIORITY.get(incoming_source, 0)
        if not CostBasisPolicy._known(current_value):
            current_priority = 0

        if current_source == MANUAL and incoming_source == CALCULATED:
            # The user unlocked a manual basis to opt back into recalculation
            return CostBasisDecision(incoming, incoming_source, True)

        if incoming_priority >= current_priority:
            return CostBasisDecision(incoming, incoming_source, True)

        logger.debug(
            "Keeping %s cost basis %s over %s value %s",
            current_source, current_value, incoming_source, incoming,
        )
        return keep
