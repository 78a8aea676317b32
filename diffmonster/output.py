"""Terminal rendering of a review session snapshot."""

from __future__ import annotations

from itertools import groupby

from diffmonster.models import Comment, PullRequestLoadedState


def _render_comments(lines: list[str], comments: tuple[Comment, ...]) -> None:
    if not comments:
        lines.append("- None.")
        return
    ordered = sorted(comments, key=lambda comment: comment.path)
    for path, path_comments in groupby(ordered, key=lambda comment: comment.path):
        lines.append(f"### `{path}`")
        for comment in path_comments:
            author = comment.user.login if comment.user else "ghost"
            position = comment.position if comment.position is not None else "outdated"
            first_line = comment.body.strip().splitlines()[0] if comment.body.strip() else ""
            lines.append(f"- #{comment.id} @{author} (position {position}): {first_line}")


def render_markdown_report(state: PullRequestLoadedState) -> str:
    """Render the pull request, review state, and comments as markdown."""
    pull_request = state.pull_request
    lines = [
        f"# {pull_request.title}",
        "",
        f"{pull_request.base.repo.full_name}#{pull_request.number} · {pull_request.state}"
        f" · {pull_request.html_url}",
        "",
    ]
    if state.current_user is not None:
        lines.append(f"Viewer: @{state.current_user.login}")
    review = state.latest_review
    lines.append(f"Latest review: `{review.state}`" if review else "Latest review: none")
    lines.append("")

    lines.append(f"## Published comments ({len(state.comments)})")
    _render_comments(lines, state.comments)
    lines.append("")
    lines.append(f"## Pending comments ({len(state.pending_comments)})")
    _render_comments(lines, state.pending_comments)
    return "\n".join(lines)
