"""Unit tests for review sessions running commands against the fake GitHub."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest
from diffmonster import github_api
from diffmonster.actions import (
    AddReview,
    AddReviewComment,
    AddSingleComment,
    CommentsFetched,
    Completion,
    DeleteComment,
    EditComment,
    SubmitReview,
)
from diffmonster.loader import load_review_session
from diffmonster.models import CommentDraft, PullRequestLoadedState, ReviewEvent, ReviewState
from diffmonster.session import ReviewSession
from tests.github_fakes import FakeGitHub, make_comment_payload, make_review_payload


def make_draft(body: str) -> CommentDraft:
    """Build a valid draft on the first added line of the fake diff."""
    return CommentDraft(body=body, path="src/app.py", position=3)


def make_completion() -> Completion:
    """Create a completion future bound to the running loop."""
    return asyncio.get_running_loop().create_future()


async def load_session(
    fake_github: FakeGitHub,
    client: httpx.AsyncClient,
    *,
    serialize_review_comments: bool = True,
) -> ReviewSession:
    """Load the fake pull request into a fresh session."""
    return await load_review_session(
        fake_github.connection(client),
        owner="acme",
        repo="rocket",
        number=42,
        serialize_review_comments=serialize_review_comments,
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_add_review_comment_opens_pending_review_then_appends(
    fake_github: FakeGitHub,
) -> None:
    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        first = make_completion()
        session.dispatch(AddReviewComment(make_draft("First"), first))
        await session.wait_idle()
        second = make_completion()
        session.dispatch(AddReviewComment(make_draft("Second"), second))
        await session.wait_idle()

    state = session.state
    assert len(fake_github.reviews) == 1
    assert fake_github.graphql_operations[-2:] == [
        "addPullRequestReview",
        "addPullRequestReviewComment",
    ]
    assert state.latest_review is not None
    assert state.latest_review.is_pending
    assert [comment.body for comment in state.pending_comments] == ["First", "Second"]
    assert state.comments == ()
    assert first.result().body == "First"
    assert second.result().body == "Second"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_concurrent_review_comments_share_one_pending_review(
    fake_github: FakeGitHub,
) -> None:
    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        session.dispatch(AddReviewComment(make_draft("First"), make_completion()))
        session.dispatch(AddReviewComment(make_draft("Second"), make_completion()))
        await session.wait_idle()

    assert len(fake_github.reviews) == 1
    assert [comment["body"] for comment in fake_github.reviews[0]["comments"]] == [
        "First",
        "Second",
    ]
    assert [comment.body for comment in session.state.pending_comments] == ["First", "Second"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unserialized_review_comments_can_open_two_pending_reviews(
    fake_github: FakeGitHub,
) -> None:
    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client, serialize_review_comments=False)
        session.dispatch(AddReviewComment(make_draft("First"), make_completion()))
        session.dispatch(AddReviewComment(make_draft("Second"), make_completion()))
        await session.wait_idle()

    assert [review["id"] for review in fake_github.reviews] == ["PRR_1", "PRR_2"]
    assert session.state.latest_review is not None
    assert session.state.latest_review.id in {"PRR_1", "PRR_2"}
    assert len(session.state.pending_comments) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_add_single_comment_publishes_and_resolves_after_fold(
    fake_github: FakeGitHub,
) -> None:
    completion_seen: list[tuple[int, bool]] = []

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        completion = make_completion()
        session.subscribe(
            lambda state: completion_seen.append((len(state.comments), completion.done()))
        )
        session.dispatch(AddSingleComment(make_draft("Ship it"), completion))
        await session.wait_idle()

    state = session.state
    assert [comment.body for comment in state.comments] == ["Ship it"]
    assert state.latest_review is not None
    assert state.latest_review.state is ReviewState.COMMENTED
    assert completion.result() == state.comments[0]
    assert completion_seen[-1] == (1, False)
    envelope = json.loads(fake_github.requests[-1].content)
    assert envelope["variables"]["input"]["event"] == "COMMENT"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_single_comment_leaves_state_and_completion_untouched(
    fake_github: FakeGitHub,
) -> None:
    fake_github.failing.add("addPullRequestReview")

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        before = session.state
        completion = make_completion()
        session.dispatch(AddSingleComment(make_draft("Ship it"), completion))
        await session.wait_idle()

    assert session.state == before
    assert not completion.done()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_review_comment_latch_is_visible_until_outcome_is_folded(
    fake_github: FakeGitHub,
) -> None:
    snapshots: list[PullRequestLoadedState] = []

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        session.subscribe(snapshots.append)
        session.dispatch(AddReviewComment(make_draft("First"), make_completion()))
        assert session.state.is_adding_review is True
        await session.wait_idle()

    assert snapshots[0].is_adding_review is True
    assert snapshots[-1].is_adding_review is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_review_comment_clears_latch(fake_github: FakeGitHub) -> None:
    fake_github.failing.add("addPullRequestReview")

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        completion = make_completion()
        session.dispatch(AddReviewComment(make_draft("First"), completion))
        await session.wait_idle()

    assert session.state.is_adding_review is False
    assert session.state.pending_comments == ()
    assert not completion.done()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_submit_review_publishes_pending_comments(fake_github: FakeGitHub) -> None:
    fake_github.comments = [make_comment_payload(1)]
    fake_github.reviews = [
        make_review_payload(1, comments=[make_comment_payload(2), make_comment_payload(3)])
    ]

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        assert [comment.id for comment in session.state.pending_comments] == [2, 3]
        completion = make_completion()
        session.dispatch(SubmitReview(ReviewEvent.APPROVE, completion))
        await session.wait_idle()

    state = session.state
    assert [comment.id for comment in state.comments] == [1, 2, 3]
    assert state.pending_comments == ()
    assert state.latest_review is not None
    assert state.latest_review.state is ReviewState.APPROVED
    assert completion.result() == state.latest_review


@pytest.mark.unit
@pytest.mark.asyncio
async def test_submit_review_without_pending_review_fails(fake_github: FakeGitHub) -> None:
    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        completion = make_completion()
        session.dispatch(SubmitReview(ReviewEvent.COMMENT, completion))
        await session.wait_idle()

    assert not completion.done()
    assert session.state.is_adding_review is False
    assert "submitPullRequestReview" not in fake_github.graphql_operations


@pytest.mark.unit
@pytest.mark.asyncio
async def test_add_review_approves_pull_request(fake_github: FakeGitHub) -> None:
    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        session.dispatch(AddReview(ReviewEvent.APPROVE, make_completion()))
        assert session.state.is_adding_review is True
        await session.wait_idle()

    assert session.state.latest_review is not None
    assert session.state.latest_review.state is ReviewState.APPROVED
    assert session.state.is_adding_review is False
    assert fake_github.reviews[-1]["comments"] == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_deleting_only_pending_comment_drops_pending_review(
    fake_github: FakeGitHub,
) -> None:
    fake_github.reviews = [make_review_payload(1, comments=[make_comment_payload(2)])]

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        comment = session.state.pending_comments[0]
        completion = make_completion()
        session.dispatch(DeleteComment(comment, completion))
        await session.wait_idle()

    assert session.state.pending_comments == ()
    assert session.state.latest_review is None
    assert completion.result() == 2
    assert fake_github.reviews[0]["comments"] == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_edit_pending_comment_updates_pending_container(fake_github: FakeGitHub) -> None:
    fake_github.comments = [make_comment_payload(1)]
    fake_github.reviews = [make_review_payload(1, comments=[make_comment_payload(2)])]

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        comment = session.state.pending_comments[0]
        session.dispatch(EditComment(comment, "Reworded", make_completion()))
        await session.wait_idle()

    assert [comment.body for comment in session.state.pending_comments] == ["Reworded"]
    assert [comment.body for comment in session.state.comments] == ["Looks off"]
    assert fake_github.graphql_operations[-1] == "updatePullRequestReviewComment"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failed_delete_keeps_comment(fake_github: FakeGitHub) -> None:
    fake_github.comments = [make_comment_payload(1)]
    fake_github.failing.add("delete_comment")

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        completion = make_completion()
        session.dispatch(DeleteComment(session.state.comments[0], completion))
        await session.wait_idle()

    assert [comment.id for comment in session.state.comments] == [1]
    assert not completion.done()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatch_rejects_events(fake_github: FakeGitHub) -> None:
    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        with pytest.raises(TypeError):
            session.dispatch(CommentsFetched(()))  # type: ignore[arg-type]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unsubscribed_listener_stops_receiving_snapshots(fake_github: FakeGitHub) -> None:
    snapshots: list[PullRequestLoadedState] = []

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        unsubscribe = session.subscribe(snapshots.append)
        unsubscribe()
        session.dispatch(AddReview(ReviewEvent.APPROVE))
        await session.wait_idle()

    assert snapshots == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_single_comment_does_not_release_review_comment_latch(
    fake_github: FakeGitHub,
) -> None:
    fake_github.reviews = [make_review_payload(1, comments=[make_comment_payload(2)])]
    release = asyncio.Event()
    fake_github.gates["addPullRequestReviewComment"] = release

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        session.dispatch(AddReviewComment(make_draft("Draft"), make_completion()))
        single = make_completion()
        session.dispatch(AddSingleComment(make_draft("Ship it"), single))
        await single
        assert session.state.is_adding_review is True
        release.set()
        await session.wait_idle()

    assert session.state.is_adding_review is False
    assert [comment.body for comment in session.state.comments] == ["Ship it"]
    assert [comment.body for comment in session.state.pending_comments] == ["Looks off", "Draft"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unexpected_effect_error_is_folded_as_failure(
    fake_github: FakeGitHub, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def broken_add_review(*args: object, **kwargs: object) -> None:
        raise KeyError("pullRequestReview")

    monkeypatch.setattr(github_api, "add_pull_request_review", broken_add_review)

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        before = session.state
        completion = make_completion()
        session.dispatch(AddReviewComment(make_draft("First"), completion))
        await session.wait_idle()

    assert session.state == before
    assert session.state.is_adding_review is False
    assert not completion.done()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_failing_listener_does_not_interrupt_folding(fake_github: FakeGitHub) -> None:
    snapshots: list[PullRequestLoadedState] = []

    def broken_listener(state: PullRequestLoadedState) -> None:
        raise RuntimeError("listener broke")

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        session.subscribe(broken_listener)
        session.subscribe(snapshots.append)
        completion = make_completion()
        session.dispatch(AddReviewComment(make_draft("First"), completion))
        await session.wait_idle()

    assert completion.result().body == "First"
    assert [comment.body for comment in session.state.pending_comments] == ["First"]
    assert len(snapshots) == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_comment_ids_stay_unique_through_a_review_session(
    fake_github: FakeGitHub,
) -> None:
    pending = make_comment_payload(2, body="Draft")
    fake_github.comments = [make_comment_payload(1), pending]
    fake_github.reviews = [make_review_payload(1, comments=[pending])]
    duplicated: list[list[int]] = []

    def record_duplicates(state: PullRequestLoadedState) -> None:
        ids = [comment.id for comment in (*state.comments, *state.pending_comments)]
        if len(ids) != len(set(ids)):
            duplicated.append(ids)

    async with fake_github.make_client() as client:
        session = await load_session(fake_github, client)
        session.subscribe(record_duplicates)
        record_duplicates(session.state)
        session.dispatch(AddReviewComment(make_draft("Second draft"), make_completion()))
        await session.wait_idle()
        session.dispatch(EditComment(session.state.pending_comments[0], "Reworded"))
        session.dispatch(DeleteComment(session.state.comments[0]))
        await session.wait_idle()
        session.dispatch(SubmitReview(ReviewEvent.COMMENT))
        await session.wait_idle()
        session.dispatch(AddReviewComment(make_draft("Next round"), make_completion()))
        await session.wait_idle()

    state = session.state
    assert duplicated == []
    assert [comment.body for comment in state.comments] == ["Reworded", "Second draft"]
    assert [comment.body for comment in state.pending_comments] == ["Next round"]
