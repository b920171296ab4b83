"""Delegated tie-break judge over an OpenAI-compatible chat completions API."""

import json
from typing import Any

import httpx

from lanepost.utils.config import settings
from lanepost.utils.run_logger import get_logger

SYSTEM_PROMPT = (
    "You pick the better alternate city for posting a freight load on a load board. "
    "Prefer the city whose name suggests freight fitting the equipment type. "
    'Answer with JSON only: {"winner": "A" or "B", "reason": "<short reason>"}'
)


class TieBreakJudge:
    """Ask an external model which of two near-tied candidates to keep.

    Raises httpx errors and ValueError for malformed answers; callers fall
    back to the deterministic rule.
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.api_url = api_url or settings.tiebreak_api_url
        self.api_key = api_key if api_key is not None else settings.tiebreak_api_key
        self.model = model or settings.tiebreak_model
        self.timeout_seconds = timeout_seconds or settings.tiebreak_timeout_seconds

    def judge(self, equipment: str, candidate_a: dict[str, Any], candidate_b: dict[str, Any]) -> dict[str, str]:
        """Return {"winner": "A"|"B", "reason": str}."""
        logger = get_logger()

        if not self.api_key:
            raise ValueError("TIEBREAK_API_KEY is required when tiebreak_mode=delegated")

        question = {"equipment": equipment, "candidateA": candidate_a, "candidateB": candidate_b}
        response = httpx.post(
            self.api_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json"
            },
            json={
                "model": self.model,
                "temperature": 0,
                "response_format": {"type": "json_object"},
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": json.dumps(question)},
                ],
            },
            timeout=self.timeout_seconds
        )
        response.raise_for_status()

        try:
            content = response.json()["choices"][0]["message"]["content"]
            verdict = json.loads(content)
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Unexpected tie-break response shape: {e}") from e

        winner = str(verdict.get("winner", "")).strip().upper() if isinstance(verdict, dict) else ""
        if winner not in ("A", "B"):
            raise ValueError(f"Tie-break judge returned no usable winner: {content!r}")

        reason = str(verdict.get("reason", ""))
        logger.debug(
            f"Tie-break {equipment}: {candidate_a['city']} vs {candidate_b['city']} -> {winner} ({reason})"
        )
        return {"winner": winner, "reason": reason}
