"""Comment slice: owns the published and pending comment containers."""

from __future__ import annotations

from dataclasses import replace

from diffmonster import github_api
from diffmonster.actions import (
    Action,
    AddReviewComment,
    AddSingleComment,
    CommandFailed,
    CommentDeleted,
    CommentEdited,
    CommentsFetched,
    DeleteComment,
    EditComment,
    EffectOutcome,
    PendingCommentsFetched,
    ReviewAdded,
    ReviewCommentAdded,
    SingleCommentAdded,
)
from diffmonster.github_client import GitHubApiError, GitHubConnection
from diffmonster.models import Comment, PullRequestLoadedState, ReviewEvent


def _without(comments: tuple[Comment, ...], comment_id: int) -> tuple[Comment, ...]:
    return tuple(comment for comment in comments if comment.id != comment_id)


def _replacing(comments: tuple[Comment, ...], updated: Comment) -> tuple[Comment, ...]:
    return tuple(updated if comment.id == updated.id else comment for comment in comments)


def _first_created_comment(comments: tuple[Comment, ...]) -> Comment:
    if not comments:
        raise GitHubApiError(
            "Expected the created review to contain the submitted comment.",
            status_code=500,
            endpoint="graphql:addPullRequestReview",
        )
    return comments[0]


def reduce_comments(state: PullRequestLoadedState, action: Action) -> PullRequestLoadedState:
    """Fold one action into the comment containers."""
    if isinstance(action, CommentsFetched):
        return replace(state, comments=action.comments)

    if isinstance(action, PendingCommentsFetched):
        return replace(state, pending_comments=action.comments)

    if isinstance(action, SingleCommentAdded):
        return replace(state, comments=(*state.comments, action.comment))

    if isinstance(action, AddReviewComment):
        return state.review_started()

    if isinstance(action, ReviewCommentAdded):
        return replace(
            state,
            pending_comments=(*state.pending_comments, action.comment),
        ).review_settled()

    if isinstance(action, CommandFailed) and isinstance(action.command, AddReviewComment):
        return state.review_settled()

    if isinstance(action, CommentDeleted):
        # A comment lives in one container only; removal is applied to both.
        return replace(
            state,
            comments=_without(state.comments, action.comment_id),
            pending_comments=_without(state.pending_comments, action.comment_id),
        )

    if isinstance(action, CommentEdited):
        return replace(
            state,
            comments=_replacing(state.comments, action.comment),
            pending_comments=_replacing(state.pending_comments, action.comment),
        )

    return state


async def add_single_comment(
    command: AddSingleComment,
    *,
    connection: GitHubConnection,
    state: PullRequestLoadedState,
) -> EffectOutcome:
    """Publish the comment as a brand-new COMMENT review."""
    pull_request = state.pull_request
    created = await github_api.add_pull_request_review(
        connection,
        pull_request_id=pull_request.node_id,
        commit_id=pull_request.head.sha,
        event=ReviewEvent.COMMENT,
        comments=[command.draft],
    )
    comment = _first_created_comment(created.comments)
    return EffectOutcome(
        events=(ReviewAdded(created.review), SingleCommentAdded(comment)),
        result=comment,
    )


async def add_review_comment(
    command: AddReviewComment,
    *,
    connection: GitHubConnection,
    state: PullRequestLoadedState,
) -> EffectOutcome:
    """Append to the pending review, or open a new pending review with this comment."""
    pull_request = state.pull_request
    latest_review = state.latest_review
    if latest_review is not None and latest_review.is_pending:
        comment = await github_api.add_review_comment(
            connection,
            review_id=latest_review.id,
            commit_id=pull_request.head.sha,
            draft=command.draft,
        )
        return EffectOutcome(events=(ReviewCommentAdded(comment),), result=comment)

    created = await github_api.add_pull_request_review(
        connection,
        pull_request_id=pull_request.node_id,
        commit_id=pull_request.head.sha,
        event=None,
        comments=[command.draft],
    )
    comment = _first_created_comment(created.comments)
    return EffectOutcome(
        events=(ReviewAdded(created.review), ReviewCommentAdded(comment)),
        result=comment,
    )


async def delete_comment(
    command: DeleteComment,
    *,
    connection: GitHubConnection,
    state: PullRequestLoadedState,
) -> EffectOutcome:
    await github_api.delete_comment(
        connection,
        pull_request=state.pull_request,
        comment_id=command.comment.id,
    )
    return EffectOutcome(events=(CommentDeleted(command.comment.id),), result=command.comment.id)


async def edit_comment(
    command: EditComment,
    *,
    connection: GitHubConnection,
    state: PullRequestLoadedState,
) -> EffectOutcome:
    updated = await github_api.edit_comment(
        connection,
        pull_request=state.pull_request,
        comment=command.comment,
        body=command.body,
    )
    return EffectOutcome(events=(CommentEdited(updated),), result=updated)


COMMENT_EFFECTS = {
    AddSingleComment: add_single_comment,
    AddReviewComment: add_review_comment,
    DeleteComment: delete_comment,
    EditComment: edit_comment,
}
