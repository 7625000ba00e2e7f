"""Registry of time-bounded approval requests for high-risk operations."""

import copy
import logging
import uuid
from datetime import datetime, timedelta

from risk.models import (
    ApprovalOutcome,
    ApprovalRequest,
    ApprovalResult,
    ApprovalStatus,
    OperationContext,
)


logger = logging.getLogger(__name__)


class ApprovalRegistry:
    """Owns approval requests and their PENDING -> terminal lifecycle.

    Expiry is pull-based: every public method first calls ``sweep(now)``,
    which moves overdue PENDING requests to EXPIRED and prunes terminal
    requests older than the retention window. No timers are involved, so
    cost stays proportional to the number of outstanding requests.

    The registry keeps its own copy of each operation and only hands out
    copies of its records, so status changes go through ``resolve`` and
    ``consume`` alone.

    Not thread-safe on its own; the owning RiskGovernor serialises access.
    """

    def __init__(self, ttl_seconds: int, retention_seconds: int = 3600):
        """Initialize the registry.

        Args:
            ttl_seconds: Lifetime of a new pending request.
            retention_seconds: How long resolved requests stay queryable, so
                late resolution attempts report ALREADY_RESOLVED.
        """
        self.ttl_seconds = ttl_seconds
        self.retention_seconds = retention_seconds
        self._requests: dict[str, ApprovalRequest] = {}

    def __len__(self) -> int:
        return len(self._requests)

    def create(self, context: OperationContext, now: datetime) -> ApprovalRequest:
        """Register a new pending request expiring ``ttl_seconds`` from now."""
        self.sweep(now)
        request = ApprovalRequest(
            id=f"apr_{uuid.uuid4().hex[:12]}",
            context=OperationContext(context.tool_name, copy.deepcopy(context.params)),
            created_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        self._requests[request.id] = request
        logger.info(
            f"Approval requested: {request.id} for {context.tool_name} "
            f"{context.symbol or '-'} (expires {request.expires_at:%H:%M:%S})"
        )
        return _snapshot(request)

    def sweep(self, now: datetime) -> list[ApprovalRequest]:
        """Expire overdue pending requests and prune old resolved ones.

        Returns:
            Copies of the requests that transitioned to EXPIRED during this sweep.
        """
        expired = []
        cutoff = now - timedelta(seconds=self.retention_seconds)

        for request_id, request in list(self._requests.items()):
            if request.status is ApprovalStatus.PENDING:
                if request.is_expired(now):
                    request.status = ApprovalStatus.EXPIRED
                    request.resolved_at = request.expires_at
                    expired.append(_snapshot(request))
                    logger.info(f"Approval expired: {request_id}")
            elif request.resolved_at is not None and request.resolved_at < cutoff:
                del self._requests[request_id]

        return expired

    def pending(self, now: datetime) -> list[ApprovalRequest]:
        """Return copies of requests still PENDING, oldest first."""
        self.sweep(now)
        return sorted(self.pending_snapshot(), key=lambda r: r.created_at)

    def pending_snapshot(self) -> list[ApprovalRequest]:
        """Return copies of PENDING requests without sweeping (no state changes)."""
        return [
            _snapshot(r) for r in self._requests.values() if r.status is ApprovalStatus.PENDING
        ]

    def resolve(
        self, request_id: str, status: ApprovalStatus, now: datetime
    ) -> ApprovalResult:
        """Check-and-set a PENDING request to APPROVED or REJECTED.

        Expiry is evaluated first, so a decision that arrives after
        ``expires_at`` observes the EXPIRED state instead of winning.

        Args:
            request_id: Request to resolve.
            status: APPROVED or REJECTED.
            now: Decision timestamp.

        Returns:
            ApprovalResult with the outcome of this attempt and a copy of
            the request.
        """
        if status not in (ApprovalStatus.APPROVED, ApprovalStatus.REJECTED):
            raise ValueError(f"Cannot resolve a request to {status.value}")

        self.sweep(now)
        request = self._requests.get(request_id)
        if request is None:
            return ApprovalResult(success=False, outcome=ApprovalOutcome.NOT_FOUND)

        if request.status.is_terminal:
            return ApprovalResult(
                success=False,
                outcome=ApprovalOutcome.ALREADY_RESOLVED,
                request=_snapshot(request),
            )

        request.status = status
        request.resolved_at = now
        logger.info(f"Approval {status.value}: {request_id}")
        outcome = (
            ApprovalOutcome.APPROVED
            if status is ApprovalStatus.APPROVED
            else ApprovalOutcome.REJECTED
        )
        return ApprovalResult(success=True, outcome=outcome, request=_snapshot(request))

    def consume(
        self, request_id: str, context: OperationContext, now: datetime
    ) -> ApprovalRequest | None:
        """Use an APPROVED request for exactly one matching operation.

        Returns:
            A copy of the request if it was approved, unused and matches
            ``context``; otherwise None.
        """
        self.sweep(now)
        request = self._requests.get(request_id)
        if (
            request is None
            or request.status is not ApprovalStatus.APPROVED
            or request.consumed
        ):
            return None
        if (
            request.context.tool_name != context.tool_name
            or request.context.params != context.params
        ):
            return None

        request.consumed = True
        return _snapshot(request)


def _snapshot(request: ApprovalRequest) -> ApprovalRequest:
    return copy.deepcopy(request)
