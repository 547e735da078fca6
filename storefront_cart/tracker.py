"""Registry of in-flight cart mutations."""

import itertools
import logging
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .actions import CartAction, CartActionKind

logger = logging.getLogger(__name__)


class PendingMutation(BaseModel):
    """A submitted cart mutation whose response has not been processed yet."""

    model_config = ConfigDict(frozen=True)

    submission_id: str
    action: CartAction
    target_keys: frozenset[str]
    sequence: int = Field(description="Submission order")
    submitted_at: datetime
    settled: bool = False

    @property
    def kind(self) -> CartActionKind:
        return self.action.kind


class SubmissionError(BaseModel):
    """An error surfaced to the UI for one submission."""

    model_config = ConfigDict(frozen=True)

    submission_id: str
    kind: str = Field(description="invalid_action, transport or backend")
    detail: str
    action_kind: Optional[CartActionKind] = None
    target_keys: frozenset[str] = frozenset()


def has_pending_lines_add(pending: Iterable[PendingMutation]) -> bool:
    """True if an unsettled LinesAdd would leave the cart with at least one line."""
    return any(
        mutation.kind is CartActionKind.LINES_ADD
        and not mutation.settled
        and any(line.quantity > 0 for line in mutation.action.lines)
        for mutation in pending
    )


class PendingMutationTracker:
    """
    Tracks every submission from register() until settle().

    Submissions against the same target are neither merged nor cancelled;
    each settles independently. Both register() and settle() run without
    awaiting, so on a single event loop they are indivisible.
    """

    def __init__(self, id_factory: Optional[Callable[[], str]] = None) -> None:
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)
        self._sequence = itertools.count(1)
        self._pending: dict[str, PendingMutation] = {}
        self._errors: dict[str, SubmissionError] = {}

    def register(self, action: CartAction, submission_id: Optional[str] = None) -> PendingMutation:
        """Record a new submission and return it."""
        submission_id = submission_id or self._id_factory()
        if submission_id in self._pending:
            raise ValueError(f"Submission {submission_id} is already pending")

        mutation = PendingMutation(
            submission_id=submission_id,
            action=action,
            target_keys=action.target_keys(),
            sequence=next(self._sequence),
            submitted_at=datetime.now(timezone.utc),
        )
        self._pending[submission_id] = mutation
        logger.info(f"Registered {action.kind.value} submission {submission_id}")
        return mutation

    def settle(
        self,
        submission_id: str,
        error: Optional[SubmissionError] = None,
    ) -> Optional[PendingMutation]:
        """
        Remove a submission from the pending set.

        Args:
            submission_id: The submission whose response was observed
            error: Error to surface for this submission, if it failed

        Returns:
            The settled mutation, or None if it was not pending
        """
        mutation = self._pending.pop(submission_id, None)
        if mutation is None:
            logger.warning(f"Settle for unknown submission {submission_id} ignored")
            return None

        if error is not None:
            self._errors[submission_id] = error
            logger.info(f"Settled {mutation.kind.value} submission {submission_id} with {error.kind} error")
        else:
            logger.info(f"Settled {mutation.kind.value} submission {submission_id}")
        return mutation.model_copy(update={"settled": True})

    def pending(self) -> tuple[PendingMutation, ...]:
        """Immutable snapshot of unsettled submissions in submission order."""
        return tuple(sorted(self._pending.values(), key=lambda mutation: mutation.sequence))

    def has_pending_lines_add(self) -> bool:
        return has_pending_lines_add(self._pending.values())

    def is_target_pending(self, key: str) -> bool:
        """True if any unsettled submission targets ``key`` (a line ID, code list, ...)."""
        return any(key in mutation.target_keys for mutation in self._pending.values())

    def errors(self) -> tuple[SubmissionError, ...]:
        return tuple(self._errors.values())

    def error_for(self, submission_id: str) -> Optional[SubmissionError]:
        return self._errors.get(submission_id)

    def dismiss(self, submission_id: str) -> None:
        self._errors.pop(submission_id, None)

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, submission_id: object) -> bool:
        return submission_id in self._pending
