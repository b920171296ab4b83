"""Cost tracking and budget management for discovery calls.

Provides functions to estimate discovery spend and enforce the per-run
budget, plus the DiscoveryGate shared by all concurrent lane workers.
"""

import threading
from contextlib import contextmanager
from typing import Any, Iterator

from lanepost.utils.config import settings
from lanepost.utils.run_logger import get_logger

# Serper charges 1 credit per places request
CREDITS_PER_CALL = 1


def estimate_discovery_cost(num_calls: int, cost_per_credit: float | None = None) -> dict[str, Any]:
    """Estimate the cost of a number of discovery calls.

    Args:
        num_calls: Number of provider calls
        cost_per_credit: Override for settings.cost_per_credit

    Returns:
        Dict with estimated credits and cost
    """
    cost_per_credit = settings.cost_per_credit if cost_per_credit is None else cost_per_credit
    estimated_credits = num_calls * CREDITS_PER_CALL
    estimated_cost_usd = estimated_credits * cost_per_credit

    return {
        "num_calls": num_calls,
        "estimated_credits": estimated_credits,
        "estimated_cost_usd": round(estimated_cost_usd, 4),
        "cost_per_credit": cost_per_credit
    }


def check_budget_status(
    credits_used: int,
    budget_usd: float | None = None,
    cost_per_credit: float | None = None,
) -> dict[str, Any]:
    """Check budget status for the current run.

    Args:
        credits_used: Credits already spent in this run
        budget_usd: Run budget (defaults to settings.discovery_budget_usd)
        cost_per_credit: Override for settings.cost_per_credit

    Returns:
        Dict with budget status, usage, and whether new calls should be blocked
    """
    budget_usd = settings.discovery_budget_usd if budget_usd is None else budget_usd
    cost_per_credit = settings.cost_per_credit if cost_per_credit is None else cost_per_credit
    total_cost_usd = credits_used * cost_per_credit

    if budget_usd > 0:
        budget_used_pct = (total_cost_usd / budget_usd) * 100
    else:
        # A zero budget disables discovery entirely
        budget_used_pct = 100.0

    if budget_used_pct >= settings.budget_hard_threshold_pct:
        status = "exceeded"
        block_new_calls = True
        message = f"Discovery budget exceeded ({budget_used_pct:.1f}% of ${budget_usd})"
    elif budget_used_pct >= settings.budget_soft_threshold_pct:
        status = "warning"
        block_new_calls = False
        message = f"Approaching discovery budget ({budget_used_pct:.1f}% of ${budget_usd})"
    else:
        status = "ok"
        block_new_calls = False
        message = f"Within discovery budget ({budget_used_pct:.1f}% of ${budget_usd})"

    return {
        "status": status,
        "message": message,
        "block_new_calls": block_new_calls,
        "budget_used_pct": round(budget_used_pct, 1),
        "total_credits": credits_used,
        "total_cost_usd": round(total_cost_usd, 4),
        "remaining_budget_usd": round(budget_usd - total_cost_usd, 4),
        "budget_usd": budget_usd
    }


def validate_budget_for_call(
    credits_used: int,
    num_calls: int = 1,
    budget_usd: float | None = None,
    cost_per_credit: float | None = None,
) -> dict[str, Any]:
    """Validate whether more discovery calls fit the run budget.

    Returns:
        Dict with allowed flag, reason, message and the underlying status
    """
    budget_usd = settings.discovery_budget_usd if budget_usd is None else budget_usd
    budget_status = check_budget_status(credits_used, budget_usd, cost_per_credit)
    call_estimate = estimate_discovery_cost(num_calls, cost_per_credit)

    if budget_status["block_new_calls"]:
        return {
            "allowed": False,
            "reason": "budget_exceeded",
            "message": (
                f"Discovery budget already exceeded. "
                f"Current usage: ${budget_status['total_cost_usd']} / ${budget_usd}"
            ),
            "budget_status": budget_status,
            "call_estimate": call_estimate
        }

    projected_cost = budget_status["total_cost_usd"] + call_estimate["estimated_cost_usd"]
    if projected_cost > budget_usd:
        return {
            "allowed": False,
            "reason": "would_exceed_budget",
            "message": (
                f"Call would exceed discovery budget. "
                f"Current: ${budget_status['total_cost_usd']}, "
                f"Call: ${call_estimate['estimated_cost_usd']}, "
                f"Total: ${projected_cost:.4f}, "
                f"Budget: ${budget_usd}"
            ),
            "budget_status": budget_status,
            "call_estimate": call_estimate
        }

    return {
        "allowed": True,
        "reason": "within_budget",
        "message": f"Call within budget (${projected_cost:.4f} / ${budget_usd})",
        "budget_status": budget_status,
        "call_estimate": call_estimate
    }


class DiscoveryGate:
    """Concurrency limit plus run budget shared by every lane worker.

    Credits are charged when a slot is granted, so two workers can never
    both spend the last credit of the budget.
    """

    def __init__(
        self,
        budget_usd: float | None = None,
        cost_per_credit: float | None = None,
        max_concurrent: int | None = None,
        slot_timeout_seconds: float | None = None,
    ):
        self.budget_usd = settings.discovery_budget_usd if budget_usd is None else budget_usd
        self.cost_per_credit = settings.cost_per_credit if cost_per_credit is None else cost_per_credit
        self.slot_timeout_seconds = (
            settings.discovery_slot_timeout_seconds if slot_timeout_seconds is None else slot_timeout_seconds
        )
        self._slots = threading.BoundedSemaphore(max_concurrent or settings.max_concurrent_discovery_calls)
        self._lock = threading.Lock()
        self.credits_used = 0
        self.calls_allowed = 0
        self.calls_skipped = 0

    @contextmanager
    def reserve(self, label: str = "discovery") -> Iterator[bool]:
        """Hold a slot for one provider call.

        Yields True when the call may proceed, False when it must be skipped
        (budget exhausted or no slot within the timeout).
        """
        logger = get_logger()

        if not self._slots.acquire(timeout=self.slot_timeout_seconds):
            with self._lock:
                self.calls_skipped += 1
            logger.warning(f"No discovery slot within {self.slot_timeout_seconds}s for {label}, skipping")
            yield False
            return

        try:
            with self._lock:
                verdict = validate_budget_for_call(
                    self.credits_used, 1, self.budget_usd, self.cost_per_credit
                )
                if verdict["allowed"]:
                    self.credits_used += CREDITS_PER_CALL
                    self.calls_allowed += 1
                else:
                    self.calls_skipped += 1

            if not verdict["allowed"]:
                logger.warning(f"Skipping {label}: {verdict['message']}")
            elif verdict["budget_status"]["status"] == "warning":
                logger.warning(verdict["budget_status"]["message"])

            yield verdict["allowed"]
        finally:
            self._slots.release()

    def status(self) -> dict[str, Any]:
        with self._lock:
            credits_used = self.credits_used
            calls_allowed = self.calls_allowed
            calls_skipped = self.calls_skipped
        return {
            **check_budget_status(credits_used, self.budget_usd, self.cost_per_credit),
            "calls_allowed": calls_allowed,
            "calls_skipped": calls_skipped,
        }
