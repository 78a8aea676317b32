"""Pull request, comment, and review records and their ingestion from GitHub payloads."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from diffmonster.github_client import (
    GitHubApiError,
    optional_int,
    optional_str,
    require_bool,
    require_int,
    require_object,
    require_str,
)


class ReviewState(StrEnum):
    """Lifecycle states of a pull request review."""

    PENDING = "PENDING"
    COMMENTED = "COMMENTED"
    APPROVED = "APPROVED"
    CHANGES_REQUESTED = "CHANGES_REQUESTED"
    DISMISSED = "DISMISSED"


class ReviewEvent(StrEnum):
    """Events accepted when creating or submitting a review.

    A missing event (None) creates a draft review left in PENDING state.
    """

    COMMENT = "COMMENT"
    APPROVE = "APPROVE"
    REQUEST_CHANGES = "REQUEST_CHANGES"


@dataclass(frozen=True, slots=True)
class User:
    """GitHub account as shown next to comments and as the session viewer."""

    login: str
    html_url: str
    id: int | None = None


@dataclass(frozen=True, slots=True)
class RepositoryRef:
    """Repository owning one end of a pull request."""

    url: str
    html_url: str
    full_name: str


@dataclass(frozen=True, slots=True)
class PullRequestEndpoint:
    """Base or head side of a pull request."""

    sha: str
    repo: RepositoryRef
    label: str | None = None


@dataclass(frozen=True, slots=True)
class PullRequest:
    """Pull request loaded once per review session."""

    id: int
    node_id: str
    number: int
    url: str
    html_url: str
    title: str
    body: str
    state: str
    base: PullRequestEndpoint
    head: PullRequestEndpoint
    user: User | None = None
    merged: bool = False


@dataclass(frozen=True, slots=True)
class GraphQLCommentRef:
    """Comment addressed by its GraphQL global id."""

    node_id: str


@dataclass(frozen=True, slots=True)
class NumericCommentRef:
    """Comment addressed by its REST database id."""

    id: int


CommentRef = GraphQLCommentRef | NumericCommentRef


@dataclass(frozen=True, slots=True)
class Comment:
    """Line-level review comment anchored at a diff position."""

    id: int
    node_id: str | None
    user: User | None
    body: str
    path: str
    position: int | None
    ref: CommentRef = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        ref: CommentRef
        if self.node_id:
            ref = GraphQLCommentRef(node_id=self.node_id)
        else:
            ref = NumericCommentRef(id=self.id)
        object.__setattr__(self, "ref", ref)


@dataclass(frozen=True, slots=True)
class Review:
    """Pull request review as returned by the GraphQL API."""

    id: str
    state: ReviewState
    viewer_did_author: bool
    created_at: str
    database_id: int | None = None

    @property
    def is_pending(self) -> bool:
        return self.state == ReviewState.PENDING


@dataclass(frozen=True, slots=True)
class CreatedReview:
    """A newly created review together with the comments it was created with."""

    review: Review
    comments: tuple[Comment, ...]


@dataclass(frozen=True, slots=True)
class PullRequestLoadedState:
    """Authoritative snapshot of one review session."""

    pull_request: PullRequest
    latest_review: Review | None = None
    comments: tuple[Comment, ...] = ()
    pending_comments: tuple[Comment, ...] = ()
    reviews_in_flight: int = 0
    current_user: User | None = None

    @property
    def is_adding_review(self) -> bool:
        """Latched while any add-review-comment, add-review or submit-review command runs."""
        return self.reviews_in_flight > 0

    def review_started(self) -> PullRequestLoadedState:
        return replace(self, reviews_in_flight=self.reviews_in_flight + 1)

    def review_settled(self) -> PullRequestLoadedState:
        return replace(self, reviews_in_flight=max(self.reviews_in_flight - 1, 0))


class CommentDraft(BaseModel):
    """Validated user input for a new line comment."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    body: str = Field(min_length=1)
    path: str = Field(min_length=1)
    position: int = Field(ge=1)

    @field_validator("body")
    @classmethod
    def validate_body(cls, value: str) -> str:
        """Reject whitespace-only comment bodies."""
        if not value.strip():
            raise ValueError("body must contain non-whitespace text.")
        return value

    def as_review_input(self) -> dict[str, Any]:
        return {"body": self.body, "path": self.path, "position": self.position}


def parse_user(payload: dict[str, Any], *, endpoint: str) -> User:
    """Build a user from REST `user` or GraphQL `author` aliased as REST fields."""
    return User(
        login=require_str(payload, key="login", endpoint=endpoint),
        html_url=require_str(payload, key="html_url", endpoint=endpoint),
        id=optional_int(payload, key="id", endpoint=endpoint),
    )


def _parse_endpoint(payload: dict[str, Any], *, key: str, endpoint: str) -> PullRequestEndpoint:
    side = require_object(payload, key=key, endpoint=endpoint)
    repo = require_object(side, key="repo", endpoint=endpoint)
    return PullRequestEndpoint(
        sha=require_str(side, key="sha", endpoint=endpoint),
        repo=RepositoryRef(
            url=require_str(repo, key="url", endpoint=endpoint),
            html_url=require_str(repo, key="html_url", endpoint=endpoint),
            full_name=require_str(repo, key="full_name", endpoint=endpoint),
        ),
        label=optional_str(side, key="label", endpoint=endpoint),
    )


def parse_pull_request(payload: dict[str, Any], *, endpoint: str) -> PullRequest:
    """Normalize a REST pull request payload."""
    user_payload = payload.get("user")
    merged = payload.get("merged")
    return PullRequest(
        id=require_int(payload, key="id", endpoint=endpoint),
        node_id=require_str(payload, key="node_id", endpoint=endpoint),
        number=require_int(payload, key="number", endpoint=endpoint),
        url=require_str(payload, key="url", endpoint=endpoint),
        html_url=require_str(payload, key="html_url", endpoint=endpoint),
        title=require_str(payload, key="title", endpoint=endpoint),
        body=optional_str(payload, key="body", endpoint=endpoint) or "",
        state=require_str(payload, key="state", endpoint=endpoint),
        base=_parse_endpoint(payload, key="base", endpoint=endpoint),
        head=_parse_endpoint(payload, key="head", endpoint=endpoint),
        user=parse_user(user_payload, endpoint=endpoint) if isinstance(user_payload, dict) else None,
        merged=merged is True,
    )


def parse_comment(payload: dict[str, Any], *, endpoint: str) -> Comment:
    """Normalize a comment from REST or from the REST-shaped GraphQL selection."""
    user_payload = payload.get("user")
    if user_payload is not None and not isinstance(user_payload, dict):
        raise GitHubApiError(
            "Expected 'user' to be an object or null in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return Comment(
        id=require_int(payload, key="id", endpoint=endpoint),
        node_id=optional_str(payload, key="node_id", endpoint=endpoint),
        user=parse_user(user_payload, endpoint=endpoint) if user_payload is not None else None,
        body=require_str(payload, key="body", endpoint=endpoint),
        path=require_str(payload, key="path", endpoint=endpoint),
        position=optional_int(payload, key="position", endpoint=endpoint),
    )


def parse_review(payload: dict[str, Any], *, endpoint: str) -> Review:
    """Normalize a GraphQL pull request review."""
    raw_state = require_str(payload, key="state", endpoint=endpoint)
    try:
        state = ReviewState(raw_state)
    except ValueError as error:
        raise GitHubApiError(
            f"Unknown review state '{raw_state}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        ) from error
    return Review(
        id=require_str(payload, key="id", endpoint=endpoint),
        state=state,
        viewer_did_author=require_bool(payload, key="viewerDidAuthor", endpoint=endpoint),
        created_at=require_str(payload, key="createdAt", endpoint=endpoint),
        database_id=optional_int(payload, key="databaseId", endpoint=endpoint),
    )
