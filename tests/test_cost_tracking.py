"""Tests for cost tracking and budget management."""

import threading

from lanepost.utils.cost_tracking import (
    DiscoveryGate,
    check_budget_status,
    estimate_discovery_cost,
    validate_budget_for_call,
)


class TestEstimateDiscoveryCost:
    """Test discovery cost estimation."""

    def test_small_run(self):
        """Test cost estimation for a handful of calls."""
        result = estimate_discovery_cost(10, cost_per_credit=0.001)

        assert result["num_calls"] == 10
        assert result["estimated_credits"] == 10
        assert result["estimated_cost_usd"] == 0.01
        assert result["cost_per_credit"] == 0.001

    def test_zero_calls(self):
        """Test cost estimation for zero calls."""
        result = estimate_discovery_cost(0, cost_per_credit=0.001)

        assert result["estimated_credits"] == 0
        assert result["estimated_cost_usd"] == 0.0


class TestCheckBudgetStatus:
    """Test budget status checks."""

    def test_ok_status(self):
        """Test status when well under budget."""
        result = check_budget_status(100, budget_usd=1.0, cost_per_credit=0.001)

        assert result["status"] == "ok"
        assert result["block_new_calls"] is False
        assert result["budget_used_pct"] == 10.0
        assert result["remaining_budget_usd"] == 0.9

    def test_warning_status(self):
        """Test status when approaching budget (80%+)."""
        result = check_budget_status(850, budget_usd=1.0, cost_per_credit=0.001)

        assert result["status"] == "warning"
        assert result["block_new_calls"] is False

    def test_exceeded_status(self):
        """Test status when budget is used up."""
        result = check_budget_status(1000, budget_usd=1.0, cost_per_credit=0.001)

        assert result["status"] == "exceeded"
        assert result["block_new_calls"] is True

    def test_zero_budget_blocks(self):
        """A zero budget disables discovery."""
        result = check_budget_status(0, budget_usd=0.0, cost_per_credit=0.001)

        assert result["block_new_calls"] is True


class TestValidateBudgetForCall:
    """Test per-call budget validation."""

    def test_within_budget(self):
        result = validate_budget_for_call(10, 1, budget_usd=1.0, cost_per_credit=0.001)

        assert result["allowed"] is True
        assert result["reason"] == "within_budget"

    def test_already_exceeded(self):
        result = validate_budget_for_call(1000, 1, budget_usd=1.0, cost_per_credit=0.001)

        assert result["allowed"] is False
        assert result["reason"] == "budget_exceeded"

    def test_would_exceed(self):
        """Test a request that would cross the budget."""
        result = validate_budget_for_call(900, 200, budget_usd=1.0, cost_per_credit=0.001)

        assert result["allowed"] is False
        assert result["reason"] == "would_exceed_budget"


class TestDiscoveryGate:
    """Shared concurrency and budget gate."""

    def test_charges_on_grant(self):
        gate = DiscoveryGate(budget_usd=1.0, cost_per_credit=0.001, max_concurrent=1, slot_timeout_seconds=1)

        with gate.reserve("test") as allowed:
            assert allowed

        assert gate.credits_used == 1
        assert gate.status()["calls_allowed"] == 1

    def test_denies_when_budget_spent(self):
        gate = DiscoveryGate(budget_usd=0.0025, cost_per_credit=0.001, max_concurrent=1, slot_timeout_seconds=1)

        grants = []
        for _ in range(4):
            with gate.reserve("test") as allowed:
                grants.append(allowed)

        assert grants == [True, True, False, False]
        assert gate.calls_skipped == 2

    def test_slot_timeout_skips(self):
        gate = DiscoveryGate(budget_usd=1.0, cost_per_credit=0.001, max_concurrent=1, slot_timeout_seconds=0.05)
        holding = threading.Event()
        release = threading.Event()

        def hold_slot():
            with gate.reserve("holder"):
                holding.set()
                release.wait(2)

        holder = threading.Thread(target=hold_slot)
        holder.start()
        holding.wait(2)
        try:
            with gate.reserve("waiter") as allowed:
                assert allowed is False
        finally:
            release.set()
            holder.join()

        assert gate.calls_skipped == 1
        assert gate.credits_used == 1

    def test_concurrent_callers_never_overspend(self):
        gate = DiscoveryGate(budget_usd=0.0045, cost_per_credit=0.001, max_concurrent=4, slot_timeout_seconds=2)
        grants = []
        lock = threading.Lock()

        def worker():
            with gate.reserve("worker") as allowed:
                with lock:
                    grants.append(allowed)

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(grants) == 4
        assert gate.credits_used == 4
