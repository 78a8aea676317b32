"""Commands and result events folded into a review session snapshot.

Commands are issued by callers and start an effect; events report effect outcomes
(or initial loads). Both are reduced, one at a time, by the comment and review slices.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from diffmonster.models import Comment, CommentDraft, Review, ReviewEvent

Completion = asyncio.Future[Any]


@dataclass(frozen=True, slots=True, eq=False)
class AddSingleComment:
    """Publish one comment immediately as its own COMMENT review."""

    draft: CommentDraft
    completion: Completion | None = None


@dataclass(frozen=True, slots=True, eq=False)
class AddReviewComment:
    """Add a comment to the viewer's pending review, creating it if needed."""

    draft: CommentDraft
    completion: Completion | None = None


@dataclass(frozen=True, slots=True, eq=False)
class DeleteComment:
    comment: Comment
    completion: Completion | None = None


@dataclass(frozen=True, slots=True, eq=False)
class EditComment:
    comment: Comment
    body: str
    completion: Completion | None = None


@dataclass(frozen=True, slots=True, eq=False)
class AddReview:
    """Create a review without comments, e.g. an approval."""

    event: ReviewEvent
    completion: Completion | None = None


@dataclass(frozen=True, slots=True, eq=False)
class SubmitReview:
    """Publish the pending review."""

    event: ReviewEvent
    completion: Completion | None = None


@dataclass(frozen=True, slots=True)
class CommentsFetched:
    comments: tuple[Comment, ...]


@dataclass(frozen=True, slots=True)
class PendingCommentsFetched:
    comments: tuple[Comment, ...]


@dataclass(frozen=True, slots=True)
class LatestReviewFetched:
    review: Review | None


@dataclass(frozen=True, slots=True)
class SingleCommentAdded:
    comment: Comment


@dataclass(frozen=True, slots=True)
class ReviewCommentAdded:
    comment: Comment


@dataclass(frozen=True, slots=True)
class CommentDeleted:
    comment_id: int


@dataclass(frozen=True, slots=True)
class CommentEdited:
    comment: Comment


@dataclass(frozen=True, slots=True)
class ReviewAdded:
    """A review was created; shared by the comment and review slices.

    `from_add_review` marks the outcome of an add-review command, which settles its latch.
    Reviews created on the way to a comment are settled by the comment event that follows.
    """

    review: Review
    from_add_review: bool = False


@dataclass(frozen=True, slots=True)
class ReviewSubmitted:
    review: Review


@dataclass(frozen=True, slots=True, eq=False)
class CommandFailed:
    """An effect failed; `error` is the exception that ended it."""

    command: Command
    error: BaseException


@dataclass(frozen=True, slots=True)
class EffectOutcome:
    """Events produced by a successful effect and the value its completion resolves to."""

    events: tuple[Event, ...]
    result: Any = None


Command = AddSingleComment | AddReviewComment | DeleteComment | EditComment | AddReview | SubmitReview
Event = (
    CommentsFetched
    | PendingCommentsFetched
    | LatestReviewFetched
    | SingleCommentAdded
    | ReviewCommentAdded
    | CommentDeleted
    | CommentEdited
    | ReviewAdded
    | ReviewSubmitted
    | CommandFailed
)
Action = Command | Event
