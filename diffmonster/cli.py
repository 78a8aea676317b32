"""Typer CLI for reviewing pull requests from the terminal."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Annotated, Any, TypeVar

import httpx
import typer
from pydantic import ValidationError

from diffmonster import github_api
from diffmonster.actions import (
    AddReview,
    AddReviewComment,
    AddSingleComment,
    Command,
    Completion,
    DeleteComment,
    EditComment,
    SubmitReview,
)
from diffmonster.config import ConfigError, DiffMonsterConfig, load_config
from diffmonster.diff import DiffParser, parse_unified_diff, positions_by_path
from diffmonster.github_client import (
    GitHubApiError,
    GitHubAuthError,
    GitHubConnection,
    GitHubError,
    GitHubInputError,
    build_github_client,
    env_token_provider,
    get_github_token_with_source,
    parse_pull_request_reference,
)
from diffmonster.loader import open_review_session
from diffmonster.models import Comment, CommentDraft, PullRequestLoadedState, ReviewEvent
from diffmonster.observability import configure_logging
from diffmonster.output import render_markdown_report
from diffmonster.session import ReviewSession

T = TypeVar("T")

app = typer.Typer(help="Review GitHub pull requests with line comments and draft reviews.")

PullRequestArgument = Annotated[
    str, typer.Argument(help="Pull request URL or owner/repo#number.")
]


def _setup() -> DiffMonsterConfig:
    """Load configuration and configure logging, exiting on invalid settings."""
    try:
        config = load_config()
    except ConfigError as error:
        typer.echo(f"Invalid configuration: {error}")
        raise typer.Exit(code=1) from error
    configure_logging(config.log_level, json_output=config.log_json)
    return config


def _require_token() -> None:
    try:
        get_github_token_with_source()
    except GitHubAuthError as error:
        typer.echo(f"Login required: {error}")
        raise typer.Exit(code=1) from error


def _run(coroutine: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine and turn gateway failures into a one-line message and exit code 1."""
    try:
        return asyncio.run(coroutine)
    except GitHubInputError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    except GitHubApiError as error:
        typer.echo(
            "GitHub request failed: "
            f"status={error.status_code} endpoint={error.endpoint}."
        )
        raise typer.Exit(code=1) from error
    except GitHubError as error:
        typer.echo(f"GitHub request failed: {error}")
        raise typer.Exit(code=1) from error
    except httpx.HTTPError as error:
        typer.echo(f"GitHub request failed: network error ({error}).")
        raise typer.Exit(code=1) from error


async def _execute(
    reference: str,
    config: DiffMonsterConfig,
    build_command: Callable[[ReviewSession, Completion], Command],
) -> tuple[bool, Any, PullRequestLoadedState]:
    """Run one command against a freshly loaded session and report its outcome."""
    async with open_review_session(reference, config) as session:
        completion: Completion = asyncio.get_running_loop().create_future()
        session.dispatch(build_command(session, completion))
        await session.wait_idle()
        if completion.done():
            return True, completion.result(), session.state
        return False, None, session.state


def _find_comment(state: PullRequestLoadedState, comment_id: int) -> Comment:
    for comment in (*state.comments, *state.pending_comments):
        if comment.id == comment_id:
            return comment
    raise typer.BadParameter(f"No comment #{comment_id} on this pull request.")


def _check_position(
    session: ReviewSession, draft: CommentDraft, parse_diff: DiffParser = parse_unified_diff
) -> None:
    positions = positions_by_path(parse_diff(session.diff_text))
    if draft.position not in positions.get(draft.path, frozenset()):
        raise typer.BadParameter(
            f"Position {draft.position} is not on the diff of '{draft.path}'."
        )


@app.command("show")
def show_command(pull_request: PullRequestArgument) -> None:
    """Print the pull request, the viewer's review state, and all comments."""
    config = _setup()

    async def load() -> PullRequestLoadedState:
        async with open_review_session(pull_request, config) as session:
            return session.state

    typer.echo(render_markdown_report(_run(load())))


@app.command("comment")
def comment_command(
    pull_request: PullRequestArgument,
    path: Annotated[str, typer.Option(help="File path the comment belongs to.")],
    position: Annotated[int, typer.Option(help="Diff position of the commented line.")],
    body: Annotated[str, typer.Option(help="Comment text (markdown).")],
    draft: Annotated[
        bool,
        typer.Option(
            "--draft/--no-draft",
            help="Add to the pending review instead of publishing immediately.",
        ),
    ] = False,
) -> None:
    """Comment on one diff line, immediately or as part of a pending review."""
    _require_token()
    config = _setup()
    try:
        comment_draft = CommentDraft(body=body, path=path, position=position)
    except ValidationError as error:
        raise typer.BadParameter(str(error)) from error

    def build(session: ReviewSession, completion: Completion) -> Command:
        _check_position(session, comment_draft)
        if draft:
            return AddReviewComment(comment_draft, completion)
        return AddSingleComment(comment_draft, completion)

    succeeded, comment, state = _run(_execute(pull_request, config, build))
    if not succeeded:
        typer.echo("Comment could not be added.")
        raise typer.Exit(code=1)
    typer.echo(f"Added comment #{comment.id} on {comment.path} at position {comment.position}.")
    if draft:
        typer.echo(f"Pending review now has {len(state.pending_comments)} comment(s).")


@app.command("edit-comment")
def edit_comment_command(
    pull_request: PullRequestArgument,
    comment_id: Annotated[int, typer.Option("--id", help="Numeric comment id.")],
    body: Annotated[str, typer.Option(help="New comment text.")],
) -> None:
    """Replace the body of a published or pending comment."""
    _require_token()
    config = _setup()

    def build(session: ReviewSession, completion: Completion) -> Command:
        return EditComment(_find_comment(session.state, comment_id), body, completion)

    succeeded, _comment, _state = _run(_execute(pull_request, config, build))
    if not succeeded:
        typer.echo(f"Comment #{comment_id} could not be edited.")
        raise typer.Exit(code=1)
    typer.echo(f"Edited comment #{comment_id}.")


@app.command("delete-comment")
def delete_comment_command(
    pull_request: PullRequestArgument,
    comment_id: Annotated[int, typer.Option("--id", help="Numeric comment id.")],
) -> None:
    """Delete a published or pending comment."""
    _require_token()
    config = _setup()

    def build(session: ReviewSession, completion: Completion) -> Command:
        return DeleteComment(_find_comment(session.state, comment_id), completion)

    succeeded, _result, state = _run(_execute(pull_request, config, build))
    if not succeeded:
        typer.echo(f"Comment #{comment_id} could not be deleted.")
        raise typer.Exit(code=1)
    typer.echo(f"Deleted comment #{comment_id}.")
    if state.latest_review is None:
        typer.echo("No pending review remains.")


@app.command("publish")
def publish_command(
    pull_request: PullRequestArgument,
    event: Annotated[
        ReviewEvent, typer.Option(case_sensitive=False, help="How to submit the review.")
    ] = ReviewEvent.COMMENT,
) -> None:
    """Submit the pending review with all of its comments."""
    _require_token()
    config = _setup()

    def build(session: ReviewSession, completion: Completion) -> Command:
        return SubmitReview(event, completion)

    succeeded, review, state = _run(_execute(pull_request, config, build))
    if not succeeded:
        typer.echo("Pending review could not be published.")
        raise typer.Exit(code=1)
    typer.echo(f"Review {review.id} is now {review.state}; {len(state.comments)} published comment(s).")


@app.command("approve")
def approve_command(pull_request: PullRequestArgument) -> None:
    """Approve the pull request."""
    _require_token()
    config = _setup()

    def build(session: ReviewSession, completion: Completion) -> Command:
        return AddReview(ReviewEvent.APPROVE, completion)

    succeeded, _review, _state = _run(_execute(pull_request, config, build))
    if not succeeded:
        typer.echo("Approval could not be submitted.")
        raise typer.Exit(code=1)
    typer.echo("Approved.")


@app.command("auth-check")
def auth_check_command(
    pull_request: Annotated[
        str | None,
        typer.Option(
            "--pull-request",
            help="Optional pull request URL or owner/repo#number for a read access check.",
        ),
    ] = None,
    trust_env: Annotated[
        bool,
        typer.Option(
            "--trust-env/--no-trust-env",
            help="Use proxy/SSL environment variables from the current shell.",
        ),
    ] = True,
) -> None:
    """Validate GitHub token setup and optional pull request read access."""
    try:
        _token, token_source = get_github_token_with_source()
    except GitHubAuthError as error:
        typer.echo(f"GitHub auth check failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(f"Token detected in {token_source}.")
    config = _setup()

    async def check() -> None:
        reference = parse_pull_request_reference(pull_request) if pull_request else None
        async with build_github_client(
            timeout_seconds=config.timeout_seconds, trust_env=trust_env
        ) as client:
            connection = GitHubConnection(
                client=client,
                token_provider=env_token_provider,
                api_base_url=config.api_base_url,
                graphql_url=config.graphql_url,
            )
            user = await github_api.fetch_authenticated_user(connection)
            typer.echo(f"Authenticated as GitHub user '{user.login}'.")

            if reference is not None:
                owner, repo, number = reference
                loaded = await github_api.fetch_pull_request(
                    connection, owner=owner, repo=repo, number=number
                )
                await github_api.fetch_pull_request_comments(connection, pull_request=loaded)
                typer.echo(f"Pull request access check passed for {owner}/{repo}#{number}.")

    try:
        _run(check())
    except ImportError as error:
        typer.echo(
            "GitHub auth check failed: proxy transport dependency is missing. "
            "Try `diffmonster auth-check --no-trust-env`, or install `httpx[socks]`."
        )
        raise typer.Exit(code=1) from error

    typer.echo("GitHub token setup is valid.")
