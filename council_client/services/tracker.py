from __future__ import annotations

from typing import Any, Iterable

from loguru import logger

from council_client.models.session import MemberResult


class ResponderStateTracker:
    """Per-member outcomes for one session, independent of arrival order.

    Owned by a single session controller. Entries are never removed.
    """

    def __init__(self) -> None:
        self._results: dict[str, MemberResult] = {}

    def record_success(
        self,
        member_id: str,
        content: str,
        elapsed_ms: int,
        **details: Any,
    ) -> MemberResult:
        result = MemberResult(
            member_id=member_id,
            content=content,
            elapsed_ms=elapsed_ms,
            **details,
        )
        self.record(result)
        return result

    def record_failure(
        self,
        member_id: str,
        error_message: str,
        **details: Any,
    ) -> MemberResult:
        result = MemberResult(member_id=member_id, error=error_message or "Unknown error", **details)
        self.record(result)
        return result

    def record(self, result: MemberResult) -> None:
        """Store a prebuilt outcome (success or failure)."""
        previous = self._results.get(result.member_id)
        if previous is not None:
            # Last write wins, but a second terminal event is a backend protocol violation.
            logger.warning(
                f"Duplicate terminal event for council member {result.member_id!r}: "
                f"{'success' if previous.succeeded else 'error'} overwritten by "
                f"{'success' if result.succeeded else 'error'}"
            )
        self._results[result.member_id] = result

    def is_complete(self, expected_member_ids: Iterable[str]) -> bool:
        expected = set(expected_member_ids)
        if not expected:
            return False
        return expected.issubset(self._results)

    def pending(self, expected_member_ids: Iterable[str]) -> list[str]:
        return [m for m in expected_member_ids if m not in self._results]

    def get(self, member_id: str) -> MemberResult | None:
        return self._results.get(member_id)

    @property
    def results(self) -> dict[str, MemberResult]:
        return dict(self._results)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self._results.values() if r.succeeded)

    @property
    def fail_count(self) -> int:
        return sum(1 for r in self._results.values() if not r.succeeded)

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, member_id: object) -> bool:
        return member_id in self._results
