"""Typed GitHub operations used by review sessions."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import structlog

from diffmonster.github_client import (
    DIFF_ACCEPT_HEADER,
    GitHubConnection,
    fetch_all_before_cursor,
    fetch_all_link_pages,
    graphql_request,
    require_object,
    require_object_list,
    rest_json,
    rest_request,
)
from diffmonster.models import (
    Comment,
    CommentDraft,
    CreatedReview,
    GraphQLCommentRef,
    PullRequest,
    Review,
    ReviewEvent,
    User,
    parse_comment,
    parse_pull_request,
    parse_review,
    parse_user,
)

logger = structlog.get_logger(__name__)

REVIEW_COMMENTS_PAGE_SIZE = 100

PULL_REQUEST_REVIEW_FIELDS = """
  id
  state
  viewerDidAuthor
  createdAt
  databaseId
"""

# Aliases GraphQL fields onto the REST comment shape so one parser serves both APIs.
REST_LIKE_COMMENT_FIELDS = """
  id: databaseId
  node_id: id
  user: author {
    html_url: url
    login
  }
  body
  path
  position
"""

PULL_REQUEST_QUERY = """
query($owner: String!, $repo: String!, $number: Int!, $author: String!) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      %(fields)s
    }
  }
}
"""

REVIEW_COMMENTS_QUERY = f"""
query($reviewId: ID!, $startCursor: String, $last: Int!) {{
  node(id: $reviewId) {{
    ... on PullRequestReview {{
      comments(last: $last, before: $startCursor) {{
        nodes {{
          {REST_LIKE_COMMENT_FIELDS}
        }}
        pageInfo {{
          hasPreviousPage
          startCursor
        }}
      }}
    }}
  }}
}}
"""

ADD_REVIEW_MUTATION = f"""
mutation($input: AddPullRequestReviewInput!, $commentCount: Int) {{
  addPullRequestReview(input: $input) {{
    pullRequestReview {{
      {PULL_REQUEST_REVIEW_FIELDS}
      comments(first: $commentCount) {{
        nodes {{
          {REST_LIKE_COMMENT_FIELDS}
        }}
      }}
    }}
  }}
}}
"""

SUBMIT_REVIEW_MUTATION = f"""
mutation($input: SubmitPullRequestReviewInput!) {{
  submitPullRequestReview(input: $input) {{
    pullRequestReview {{
      {PULL_REQUEST_REVIEW_FIELDS}
    }}
  }}
}}
"""

ADD_REVIEW_COMMENT_MUTATION = f"""
mutation($input: AddPullRequestReviewCommentInput!) {{
  addPullRequestReviewComment(input: $input) {{
    comment {{
      {REST_LIKE_COMMENT_FIELDS}
    }}
  }}
}}
"""

UPDATE_REVIEW_COMMENT_MUTATION = f"""
mutation($input: UpdatePullRequestReviewCommentInput!) {{
  updatePullRequestReviewComment(input: $input) {{
    pullRequestReviewComment {{
      {REST_LIKE_COMMENT_FIELDS}
    }}
  }}
}}
"""


def pull_request_url(connection: GitHubConnection, *, owner: str, repo: str, number: int) -> str:
    return f"{connection.api_base_url}/repos/{owner}/{repo}/pulls/{number}"


def _review_comment_url(pull_request: PullRequest, comment_id: int) -> str:
    return f"{pull_request.base.repo.url}/pulls/comments/{comment_id}"


def _event_value(event: ReviewEvent | None) -> str | None:
    return event.value if event is not None else None


async def fetch_pull_request(
    connection: GitHubConnection,
    *,
    owner: str,
    repo: str,
    number: int,
) -> PullRequest:
    """Fetch one pull request over REST."""
    url = pull_request_url(connection, owner=owner, repo=repo, number=number)
    payload = await rest_json(connection, url)
    return parse_pull_request(payload, endpoint=url)


async def fetch_pull_request_diff(
    connection: GitHubConnection,
    *,
    owner: str,
    repo: str,
    number: int,
) -> str:
    """Fetch the raw unified diff of a pull request."""
    # The query suffix keeps caches from serving the JSON variant of the same URL.
    url = f"{pull_request_url(connection, owner=owner, repo=repo, number=number)}?.diff"
    response = await rest_request(connection, url, headers={"Accept": DIFF_ACCEPT_HEADER})
    return response.text


async def fetch_pull_request_comments(
    connection: GitHubConnection,
    *,
    pull_request: PullRequest,
) -> list[Comment]:
    """Fetch every published review comment, following `Link: rel="next"` pages."""
    url = f"{pull_request.url}/comments"
    rows = await fetch_all_link_pages(connection, url)
    return [parse_comment(row, endpoint=url) for row in rows]


async def fetch_pull_request_from_graphql(
    connection: GitHubConnection,
    *,
    owner: str,
    repo: str,
    number: int,
    author: str,
    fields: str,
) -> dict[str, Any]:
    """Fetch a pull request through GraphQL with a caller-supplied field selection.

    The selection may use the `$author` variable, e.g. `reviews(last: 1, author: $author)`.
    """
    data = await graphql_request(
        connection,
        PULL_REQUEST_QUERY % {"fields": fields},
        {"owner": owner, "repo": repo, "number": number, "author": author},
    )
    repository = require_object(data, key="repository", endpoint="graphql:repository")
    return require_object(repository, key="pullRequest", endpoint="graphql:repository")


async def fetch_review_comments(
    connection: GitHubConnection,
    *,
    review_id: str,
    start_cursor: str | None = None,
    page_size: int = REVIEW_COMMENTS_PAGE_SIZE,
) -> list[Comment]:
    """Fetch all comments of a review before `start_cursor`, oldest first."""
    endpoint = f"graphql:node:{review_id}"

    async def fetch_page(before: str | None) -> dict[str, Any]:
        data = await graphql_request(
            connection,
            REVIEW_COMMENTS_QUERY,
            {"reviewId": review_id, "startCursor": before, "last": page_size},
        )
        node = require_object(data, key="node", endpoint=endpoint)
        return require_object(node, key="comments", endpoint=endpoint)

    nodes = await fetch_all_before_cursor(fetch_page, start_cursor, endpoint=endpoint)
    return [parse_comment(node, endpoint=endpoint) for node in nodes]


async def add_pull_request_review(
    connection: GitHubConnection,
    *,
    pull_request_id: str,
    commit_id: str,
    event: ReviewEvent | None,
    comments: Sequence[CommentDraft] = (),
) -> CreatedReview:
    """Create a review with initial comments; `event=None` leaves it PENDING."""
    endpoint = "graphql:addPullRequestReview"
    logger.debug(
        "github.review.create",
        review_event=_event_value(event),
        comment_count=len(comments),
    )
    data = await graphql_request(
        connection,
        ADD_REVIEW_MUTATION,
        {
            "input": {
                "pullRequestId": pull_request_id,
                "commitOID": commit_id,
                "event": _event_value(event),
                "comments": [draft.as_review_input() for draft in comments],
            },
            "commentCount": len(comments),
        },
    )
    result = require_object(data, key="addPullRequestReview", endpoint=endpoint)
    payload = require_object(result, key="pullRequestReview", endpoint=endpoint)
    created_comments: tuple[Comment, ...] = ()
    comments_payload = payload.get("comments")
    if isinstance(comments_payload, dict):
        nodes = require_object_list(comments_payload, key="nodes", endpoint=endpoint)
        created_comments = tuple(parse_comment(node, endpoint=endpoint) for node in nodes)
    return CreatedReview(review=parse_review(payload, endpoint=endpoint), comments=created_comments)


async def submit_pull_request_review(
    connection: GitHubConnection,
    *,
    review_id: str,
    event: ReviewEvent,
) -> Review:
    """Publish a pending review."""
    endpoint = "graphql:submitPullRequestReview"
    data = await graphql_request(
        connection,
        SUBMIT_REVIEW_MUTATION,
        {"input": {"pullRequestReviewId": review_id, "event": event.value}},
    )
    result = require_object(data, key="submitPullRequestReview", endpoint=endpoint)
    payload = require_object(result, key="pullRequestReview", endpoint=endpoint)
    return parse_review(payload, endpoint=endpoint)


async def add_review_comment(
    connection: GitHubConnection,
    *,
    review_id: str,
    commit_id: str,
    draft: CommentDraft,
) -> Comment:
    """Append a comment to an existing pending review."""
    endpoint = "graphql:addPullRequestReviewComment"
    data = await graphql_request(
        connection,
        ADD_REVIEW_COMMENT_MUTATION,
        {
            "input": {
                "pullRequestReviewId": review_id,
                "commitOID": commit_id,
                **draft.as_review_input(),
            }
        },
    )
    result = require_object(data, key="addPullRequestReviewComment", endpoint=endpoint)
    return parse_comment(require_object(result, key="comment", endpoint=endpoint), endpoint=endpoint)


async def delete_comment(
    connection: GitHubConnection,
    *,
    pull_request: PullRequest,
    comment_id: int,
) -> None:
    """Delete a review comment by its numeric id (REST only)."""
    await rest_request(connection, _review_comment_url(pull_request, comment_id), method="DELETE")


async def edit_comment_via_rest(
    connection: GitHubConnection,
    *,
    pull_request: PullRequest,
    comment_id: int,
    body: str,
) -> Comment:
    url = _review_comment_url(pull_request, comment_id)
    payload = await rest_json(connection, url, method="PATCH", json_body={"body": body})
    return parse_comment(payload, endpoint=url)


async def edit_comment_via_graphql(
    connection: GitHubConnection,
    *,
    node_id: str,
    body: str,
) -> Comment:
    endpoint = "graphql:updatePullRequestReviewComment"
    data = await graphql_request(
        connection,
        UPDATE_REVIEW_COMMENT_MUTATION,
        {"input": {"pullRequestReviewCommentId": node_id, "body": body}},
    )
    result = require_object(data, key="updatePullRequestReviewComment", endpoint=endpoint)
    payload = require_object(result, key="pullRequestReviewComment", endpoint=endpoint)
    return parse_comment(payload, endpoint=endpoint)


async def edit_comment(
    connection: GitHubConnection,
    *,
    pull_request: PullRequest,
    comment: Comment,
    body: str,
) -> Comment:
    """Edit a comment through GraphQL when it has a global id, otherwise through REST."""
    ref = comment.ref
    if isinstance(ref, GraphQLCommentRef):
        return await edit_comment_via_graphql(connection, node_id=ref.node_id, body=body)
    return await edit_comment_via_rest(
        connection,
        pull_request=pull_request,
        comment_id=ref.id,
        body=body,
    )


async def fetch_authenticated_user(connection: GitHubConnection) -> User:
    """Fetch the account the current token belongs to."""
    url = f"{connection.api_base_url}/user"
    payload = await rest_json(connection, url)
    return parse_user(payload, endpoint=url)
