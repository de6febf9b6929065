import pytest

from deepresearch.config import ResearchLimits, Settings
from deepresearch.errors import AuthError, BudgetError
from deepresearch.services.budget import CreditAccountant, check_admission
from deepresearch.services.task_store import InMemoryResearchStore


def test_check_admission_rejects_low_balance():
    with pytest.raises(BudgetError) as exc_info:
        check_admission(3, ResearchLimits())
    payload = exc_info.value.to_event_payload()
    assert payload["insufficientCredits"] is True
    assert payload["currentBalance"] == 3
    assert payload["requiredCredits"] == 8
    assert payload["shortfall"] == 5


def test_check_admission_unreadable_balance_is_not_a_credit_shortfall():
    with pytest.raises(AuthError) as exc_info:
        check_admission(None, ResearchLimits())
    assert exc_info.value.to_event_payload() == {"error": "Unable to verify account. Please try again."}


def test_check_admission_allows_exact_base_cost():
    check_admission(8, ResearchLimits())


def test_accountant_starts_at_base_cost():
    accountant = CreditAccountant(ResearchLimits())
    assert accountant.accumulated == 8
    assert accountant.committed == 8
    assert accountant.remaining == 17


@pytest.mark.asyncio
async def test_finalize_caps_and_debits_once():
    store = InMemoryResearchStore(balances={"u1": 100})
    accountant = CreditAccountant(ResearchLimits())
    for _ in range(10):
        accountant.record_search()
    for _ in range(5):
        accountant.record_scrape()

    assert accountant.exhausted
    assert accountant.reported == 25

    first = await accountant.finalize(store, task_id="t1", user_id="u1", category="supplier")
    second = await accountant.finalize(store, task_id="t1", user_id="u1", category="supplier")

    assert first == second == 25
    assert len(store.ledger) == 1
    assert store.ledger[0].description == "Deep Research - supplier (10 searches, 5 scrapes)"
    assert store.balances["u1"] == 75


@pytest.mark.asyncio
async def test_finalize_committed_only_ignores_open_round():
    store = InMemoryResearchStore(balances={"u1": 50})
    accountant = CreditAccountant(ResearchLimits())
    accountant.record_search()
    accountant.record_search()
    accountant.commit_round()
    accountant.record_scrape()

    charged = await accountant.finalize(store, task_id="t1", user_id="u1", category="general", committed_only=True)

    assert charged == 10
    assert store.ledger[0].amount == 10


class _BrokenLedger:
    async def debit(self, **kwargs):
        raise RuntimeError("ledger offline")


@pytest.mark.asyncio
async def test_ledger_failure_is_not_raised():
    accountant = CreditAccountant(ResearchLimits())
    charged = await accountant.finalize(_BrokenLedger(), task_id="t1", user_id="u1", category="general")
    assert charged == 8
    assert accountant.debited


def test_limits_from_settings_keeps_cap_above_base_cost():
    limits = ResearchLimits.from_settings(Settings(base_cost=10, max_credits=4, max_iterations=0))
    assert limits.max_credits == 10
    assert limits.max_iterations == 1
