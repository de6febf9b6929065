from __future__ import annotations

from dataclasses import dataclass, field

from deepresearch.config import ResearchLimits
from deepresearch.errors import AuthError, BudgetError
from deepresearch.models.interfaces import CreditLedger
from deepresearch.services import logger as log_service


def check_admission(balance: int | None, limits: ResearchLimits) -> None:
    """Fail fast when the caller cannot afford the base cost.

    An unreadable balance is an account problem, not an empty wallet.
    """
    if balance is None:
        raise AuthError("Unable to verify account. Please try again.")
    current = int(balance)
    if current < limits.base_cost:
        raise BudgetError(balance=current, required=limits.base_cost)


@dataclass
class CreditAccountant:
    """Per-task credit bookkeeping.

    `accumulated` counts every completed call; `committed` is the subset
    attributed at round boundaries and is what a cancelled task is charged.
    """

    limits: ResearchLimits
    accumulated: int = 0
    committed: int = 0
    search_count: int = 0
    scrape_count: int = 0
    _debited: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        self.accumulated = self.limits.base_cost
        self.committed = self.limits.base_cost

    @property
    def exhausted(self) -> bool:
        return self.accumulated >= self.limits.max_credits

    @property
    def remaining(self) -> int:
        return max(self.limits.max_credits - self.accumulated, 0)

    @property
    def reported(self) -> int:
        return min(self.accumulated, self.limits.max_credits)

    @property
    def debited(self) -> bool:
        return self._debited

    def record_search(self) -> None:
        self.search_count += 1
        self.accumulated += self.limits.cost_per_search

    def record_scrape(self) -> None:
        self.scrape_count += 1
        self.accumulated += self.limits.cost_per_scrape

    def commit_round(self) -> None:
        self.committed = self.accumulated

    def description(self, category: str) -> str:
        return (
            f"Deep Research - {category} "
            f"({self.search_count} searches, {self.scrape_count} scrapes)"
        )

    async def finalize(
        self,
        ledger: CreditLedger,
        *,
        task_id: str,
        user_id: str,
        category: str,
        committed_only: bool = False,
    ) -> int:
        """Issue the single debit for this task and return the amount charged."""
        amount = min(self.committed if committed_only else self.accumulated, self.limits.max_credits)
        if self._debited:
            return amount
        self._debited = True
        try:
            ok = await ledger.debit(
                task_id=task_id,
                user_id=user_id,
                amount=amount,
                description=self.description(category),
            )
            if not ok:
                log_service.log_event(
                    event_type="ledger_error",
                    message="Credit debit was rejected",
                    task_id=task_id,
                    amount=amount,
                )
        except Exception as e:
            log_service.log_event(
                event_type="ledger_error",
                message="Credit debit failed",
                task_id=task_id,
                amount=amount,
                error=str(e),
            )
        return amount
