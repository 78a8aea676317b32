"""Review session: one snapshot, commands in, folded outcomes out."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable

import httpx
import structlog

from diffmonster.actions import (
    Action,
    AddReviewComment,
    Command,
    CommandFailed,
    EffectOutcome,
)
from diffmonster.comment_store import COMMENT_EFFECTS, reduce_comments
from diffmonster.github_client import GitHubConnection, GitHubError
from diffmonster.models import PullRequestLoadedState
from diffmonster.review_store import REVIEW_EFFECTS, ReviewStateError, reduce_review

logger = structlog.get_logger(__name__)

Effect = Callable[..., Awaitable[EffectOutcome]]
Listener = Callable[[PullRequestLoadedState], None]

EFFECTS: dict[type, Effect] = {**COMMENT_EFFECTS, **REVIEW_EFFECTS}
EXPECTED_FAILURES = (GitHubError, httpx.HTTPError, ReviewStateError)


def reduce(state: PullRequestLoadedState, action: Action) -> PullRequestLoadedState:
    """Fold one action through the comment slice, then the review slice."""
    return reduce_review(reduce_comments(state, action), action)


class ReviewSession:
    """Holds the snapshot of one pull request review and runs commands against it.

    Effects run as independent tasks and may overlap; their outcomes are folded in
    completion order. The fold is synchronous, so snapshots change one action at a time.

    With `serialize_review_comments` (the default), add-review-comment effects of the
    session wait for each other, so a second draft comment sees the pending review
    created by the first. Without it, two draft comments issued back to back can both
    open a new pending review.
    """

    def __init__(
        self,
        connection: GitHubConnection,
        state: PullRequestLoadedState,
        *,
        diff_text: str = "",
        serialize_review_comments: bool = True,
    ) -> None:
        self.connection = connection
        self.diff_text = diff_text
        self._state = state
        self._serialize_review_comments = serialize_review_comments
        self._review_comment_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> PullRequestLoadedState:
        return self._state

    @property
    def pull_request_id(self) -> int:
        return self._state.pull_request.id

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call `listener` with every new snapshot; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, action: Action) -> PullRequestLoadedState:
        """Fold one action into the snapshot and notify listeners."""
        new_state = reduce(self._state, action)
        if new_state is not self._state:
            self._state = new_state
            for listener in list(self._listeners):
                try:
                    listener(new_state)
                except Exception:
                    # The snapshot is already folded.
                    logger.exception(
                        "session.listener_failed",
                        pull_request_id=self.pull_request_id,
                        action=type(action).__name__,
                    )
        return self._state

    def dispatch(self, command: Command) -> asyncio.Task[None]:
        """Fold a command and start its effect; the returned task ends after the fold."""
        effect = EFFECTS.get(type(command))
        if effect is None:
            raise TypeError(f"Unsupported command {type(command).__name__}.")

        logger.debug(
            "session.dispatch",
            command=type(command).__name__,
            pull_request_id=self.pull_request_id,
        )
        self.publish(command)
        task = asyncio.get_running_loop().create_task(self._run(command, effect))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every effect dispatched so far has been folded."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    def _lock_for(self, command: Command) -> contextlib.AbstractAsyncContextManager[object]:
        if self._serialize_review_comments and isinstance(command, AddReviewComment):
            return self._review_comment_lock
        return contextlib.nullcontext()

    async def _run(self, command: Command, effect: Effect) -> None:
        async with self._lock_for(command):
            # The branch state is whatever is folded when the effect starts running.
            state = self._state
            try:
                outcome = await effect(command, connection=self.connection, state=state)
            except Exception as error:
                log = logger.warning if isinstance(error, EXPECTED_FAILURES) else logger.exception
                log(
                    "session.command_failed",
                    command=type(command).__name__,
                    pull_request_id=state.pull_request.id,
                    error=str(error),
                    error_type=type(error).__name__,
                )
                self.publish(CommandFailed(command=command, error=error))
                return

            for event in outcome.events:
                self.publish(event)

        completion = command.completion
        if completion is not None and not completion.done():
            completion.set_result(outcome.result)
