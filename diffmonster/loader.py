"""Initial load of a review session."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from diffmonster import github_api
from diffmonster.actions import CommentsFetched, LatestReviewFetched, PendingCommentsFetched
from diffmonster.config import DiffMonsterConfig
from diffmonster.github_client import (
    GitHubConnection,
    TokenProvider,
    build_github_client,
    env_token_provider,
    parse_pull_request_reference,
    require_object,
    require_object_list,
    require_str,
)
from diffmonster.models import Comment, PullRequestLoadedState, Review, parse_comment, parse_review
from diffmonster.session import ReviewSession

logger = structlog.get_logger(__name__)

LATEST_REVIEW_FIELDS = """
  reviews(last: 1, author: $author) {
    nodes {
      %(review_fields)s
      comments(last: %(page_size)d) {
        nodes {
          %(comment_fields)s
        }
        pageInfo {
          hasPreviousPage
          startCursor
        }
      }
    }
  }
"""


async def fetch_latest_review(
    connection: GitHubConnection,
    *,
    owner: str,
    repo: str,
    number: int,
    author: str,
    page_size: int = github_api.REVIEW_COMMENTS_PAGE_SIZE,
) -> tuple[Review | None, tuple[Comment, ...]]:
    """Return the viewer's latest review and, when it is pending, its comments oldest-first."""
    endpoint = "graphql:reviews"
    pull_request = await github_api.fetch_pull_request_from_graphql(
        connection,
        owner=owner,
        repo=repo,
        number=number,
        author=author,
        fields=LATEST_REVIEW_FIELDS
        % {
            "review_fields": github_api.PULL_REQUEST_REVIEW_FIELDS,
            "comment_fields": github_api.REST_LIKE_COMMENT_FIELDS,
            "page_size": page_size,
        },
    )
    reviews = require_object(pull_request, key="reviews", endpoint=endpoint)
    nodes = require_object_list(reviews, key="nodes", endpoint=endpoint)
    if not nodes:
        return None, ()

    review_payload = nodes[-1]
    review = parse_review(review_payload, endpoint=endpoint)
    if not review.is_pending:
        return review, ()

    page = require_object(review_payload, key="comments", endpoint=endpoint)
    newest = [
        parse_comment(node, endpoint=endpoint)
        for node in require_object_list(page, key="nodes", endpoint=endpoint)
    ]
    page_info = require_object(page, key="pageInfo", endpoint=endpoint)
    older: list[Comment] = []
    if page_info.get("hasPreviousPage") is True:
        older = await github_api.fetch_review_comments(
            connection,
            review_id=review.id,
            start_cursor=require_str(page_info, key="startCursor", endpoint=endpoint),
            page_size=page_size,
        )
    return review, (*older, *newest)


async def load_review_session(
    connection: GitHubConnection,
    *,
    owner: str,
    repo: str,
    number: int,
    serialize_review_comments: bool = True,
) -> ReviewSession:
    """Fetch everything a review session starts from and fold it into a snapshot."""
    logger.info("session.load", owner=owner, repo=repo, number=number)
    pull_request = await github_api.fetch_pull_request(
        connection, owner=owner, repo=repo, number=number
    )
    diff_text, comments = await asyncio.gather(
        github_api.fetch_pull_request_diff(connection, owner=owner, repo=repo, number=number),
        github_api.fetch_pull_request_comments(connection, pull_request=pull_request),
    )

    current_user = None
    latest_review: Review | None = None
    pending_comments: tuple[Comment, ...] = ()
    if connection.token_provider():
        current_user = await github_api.fetch_authenticated_user(connection)
        latest_review, pending_comments = await fetch_latest_review(
            connection,
            owner=owner,
            repo=repo,
            number=number,
            author=current_user.login,
        )

    session = ReviewSession(
        connection,
        PullRequestLoadedState(pull_request=pull_request, current_user=current_user),
        diff_text=diff_text,
        serialize_review_comments=serialize_review_comments,
    )
    pending_ids = {comment.id for comment in pending_comments}
    session.publish(
        CommentsFetched(tuple(comment for comment in comments if comment.id not in pending_ids))
    )
    session.publish(LatestReviewFetched(latest_review))
    session.publish(PendingCommentsFetched(pending_comments))
    return session


@asynccontextmanager
async def open_review_session(
    reference: str,
    config: DiffMonsterConfig,
    *,
    token_provider: TokenProvider = env_token_provider,
) -> AsyncIterator[ReviewSession]:
    """Load the session for a pull request URL or `owner/repo#number` reference."""
    owner, repo, number = parse_pull_request_reference(reference)
    async with build_github_client(timeout_seconds=config.timeout_seconds) as client:
        connection = GitHubConnection(
            client=client,
            token_provider=token_provider,
            api_base_url=config.api_base_url,
            graphql_url=config.graphql_url,
        )
        session = await load_review_session(
            connection,
            owner=owner,
            repo=repo,
            number=number,
            serialize_review_comments=config.serialize_review_comments,
        )
        yield session
        await session.wait_idle()
