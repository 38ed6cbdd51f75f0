"""Derived status for forwarded batches.

The batch-level status is never stored. It is recomputed from the per-candidate
decisions on every read, so a crash halfway through a subset decision cannot
leave it out of sync.
"""

from typing import Iterable, Optional

from models.status import BatchStatus, Decision


def derive_batch_status(decisions: Iterable[Optional[str]]) -> BatchStatus:
    """
    Compute the batch status from per-candidate decisions.

    Args:
        decisions: One entry per batch member; None for undecided members

    Returns:
        PENDING_REVIEW if nothing is decided, APPROVED_BY_REVIEWER if every
        member was approved, REJECTED_BY_REVIEWER if every member was
        rejected, PARTIALLY_DECIDED otherwise
    """
    decisions = list(decisions)
    decided = [d for d in decisions if d is not None]

    if not decided:
        return BatchStatus.PENDING_REVIEW
    if len(decided) == len(decisions):
        if all(d == Decision.APPROVE for d in decided):
            return BatchStatus.APPROVED_BY_REVIEWER
        if all(d == Decision.REJECT for d in decided):
            return BatchStatus.REJECTED_BY_REVIEWER
    return BatchStatus.PARTIALLY_DECIDED


def summarize_decisions(members: Iterable[dict]) -> dict:
    """Count approved, rejected and pending members of a batch."""
    summary = {"approved": 0, "rejected": 0, "pending": 0}
    for member in members:
        decision = member.get("decision")
        if decision == Decision.APPROVE:
            summary["approved"] += 1
        elif decision == Decision.REJECT:
            summary["rejected"] += 1
        else:
            summary["pending"] += 1
    return summary
