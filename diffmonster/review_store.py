"""Review slice: the only writer of `latest_review`."""

from __future__ import annotations

from dataclasses import replace

from diffmonster import github_api
from diffmonster.actions import (
    Action,
    AddReview,
    CommandFailed,
    CommentDeleted,
    EffectOutcome,
    LatestReviewFetched,
    ReviewAdded,
    ReviewSubmitted,
    SubmitReview,
)
from diffmonster.github_client import GitHubConnection
from diffmonster.models import PullRequestLoadedState


class ReviewStateError(RuntimeError):
    """Raised when a review command does not apply to the current snapshot."""


def reduce_review(state: PullRequestLoadedState, action: Action) -> PullRequestLoadedState:
    """Fold one action into the review lifecycle fields.

    Runs after the comment slice has folded the same action.
    """
    if isinstance(action, (AddReview, SubmitReview)):
        return state.review_started()

    if isinstance(action, LatestReviewFetched):
        return replace(state, latest_review=action.review)

    if isinstance(action, ReviewAdded):
        state = replace(state, latest_review=action.review)
        return state.review_settled() if action.from_add_review else state

    if isinstance(action, ReviewSubmitted):
        return replace(
            state,
            latest_review=action.review,
            comments=(*state.comments, *state.pending_comments),
            pending_comments=(),
        ).review_settled()

    if isinstance(action, CommandFailed) and isinstance(action.command, (AddReview, SubmitReview)):
        return state.review_settled()

    if isinstance(action, CommentDeleted) and not state.pending_comments:
        # Known coupling: any deletion that leaves no pending comments drops the latest
        # review, even when the deleted comment was a published one.
        return replace(state, latest_review=None)

    return state


async def add_review(
    command: AddReview,
    *,
    connection: GitHubConnection,
    state: PullRequestLoadedState,
) -> EffectOutcome:
    pull_request = state.pull_request
    created = await github_api.add_pull_request_review(
        connection,
        pull_request_id=pull_request.node_id,
        commit_id=pull_request.head.sha,
        event=command.event,
    )
    return EffectOutcome(
        events=(ReviewAdded(created.review, from_add_review=True),),
        result=created.review,
    )


async def submit_review(
    command: SubmitReview,
    *,
    connection: GitHubConnection,
    state: PullRequestLoadedState,
) -> EffectOutcome:
    latest_review = state.latest_review
    if latest_review is None or not latest_review.is_pending:
        raise ReviewStateError("There is no pending review to submit.")
    review = await github_api.submit_pull_request_review(
        connection,
        review_id=latest_review.id,
        event=command.event,
    )
    return EffectOutcome(events=(ReviewSubmitted(review),), result=review)


REVIEW_EFFECTS = {
    AddReview: add_review,
    SubmitReview: submit_review,
}
