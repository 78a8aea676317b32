"""GitHub transport, pagination, and auth helpers."""

from __future__ import annotations

import os
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import structlog
from dotenv import load_dotenv

logger = structlog.get_logger(__name__)

GITHUB_API_BASE_URL = "https://api.github.com"
GITHUB_GRAPHQL_URL = f"{GITHUB_API_BASE_URL}/graphql"
# REST payloads carry `node_id` values usable as GraphQL global ids under this media type.
GLOBAL_ID_ACCEPT_HEADER = "application/vnd.github.jean-grey-preview+json"
DIFF_ACCEPT_HEADER = "application/vnd.github.v3.diff"
USER_AGENT = "diffmonster"
LINK_ENTRY_PATTERN = re.compile(r"<(?P<uri>[^>]*)>(?P<params>(?:\s*;\s*[^;,]*)*)")
LINK_PARAM_PATTERN = re.compile(
    r";\s*(?P<key>[^=;\s]+)\s*=\s*(?:\"(?P<quoted>[^\"]*)\"|(?P<bare>[^;,\s]*))"
)
PULL_REQUEST_URL_PATTERN = re.compile(
    r"https?://github\.com/(?P<owner>[^/\s]+)/(?P<repo>[^/\s]+)/pull/(?P<number>[0-9]+)"
)
PULL_REQUEST_SHORTHAND_PATTERN = re.compile(
    r"^(?P<owner>[^/\s]+)/(?P<repo>[^#\s]+)#(?P<number>[0-9]+)$"
)

TokenProvider = Callable[[], str | None]
CursorPageFetcher = Callable[[str | None], Awaitable[dict[str, Any]]]


class GitHubError(RuntimeError):
    """Base class for failures reported by the GitHub gateway."""


class GitHubAuthError(GitHubError):
    """Raised when required GitHub authentication is missing."""


class GitHubInputError(ValueError):
    """Raised when repository or PR input values are invalid."""


class GitHubApiError(GitHubError):
    """Raised when a GitHub API request fails or returns an unexpected payload."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class GitHubRateLimitError(GitHubApiError):
    """Raised when GitHub API rate limiting rejects a request."""


class GitHubGraphQLError(GitHubError):
    """Raised when a GraphQL response carries a non-empty `errors` array."""

    def __init__(self, errors: list[Any]) -> None:
        messages = [
            str(error.get("message", error)) if isinstance(error, dict) else str(error)
            for error in errors
        ]
        super().__init__(f"GitHub GraphQL request failed: {'; '.join(messages)}")
        self.errors = errors


@dataclass(frozen=True, slots=True)
class GitHubConnection:
    """HTTP client plus the token provider and endpoints every gateway call needs."""

    client: httpx.AsyncClient
    token_provider: TokenProvider
    api_base_url: str = GITHUB_API_BASE_URL
    graphql_url: str = GITHUB_GRAPHQL_URL


@dataclass(frozen=True, slots=True)
class HeaderLink:
    """One entry of an RFC 8288 `Link` response header."""

    uri: str
    rels: tuple[str, ...]


def ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected JSON object for {context}.",
            status_code=500,
            endpoint=context,
        )
    return value


def require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise GitHubApiError(
            f"Expected string field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def optional_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str | None:
    """Read a string-or-null field from payload."""
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise GitHubApiError(
            f"Expected '{key}' to be a string or null in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def require_bool(payload: dict[str, Any], *, key: str, endpoint: str) -> bool:
    """Read a required boolean field from payload."""
    value = payload.get(key)
    if not isinstance(value, bool):
        raise GitHubApiError(
            f"Expected boolean field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise GitHubApiError(
            f"Expected integer field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def optional_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int | None:
    """Read an integer-or-null field from payload."""
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, int) or isinstance(value, bool):
        raise GitHubApiError(
            f"Expected '{key}' to be an integer or null in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def require_object(payload: dict[str, Any], *, key: str, endpoint: str) -> dict[str, Any]:
    """Read a required object field from payload."""
    value = payload.get(key)
    if not isinstance(value, dict):
        raise GitHubApiError(
            f"Expected object field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def require_object_list(
    payload: dict[str, Any], *, key: str, endpoint: str
) -> list[dict[str, Any]]:
    """Read a required array-of-objects field from payload."""
    value = payload.get(key)
    if not isinstance(value, list) or not all(isinstance(item, dict) for item in value):
        raise GitHubApiError(
            f"Expected array of objects in field '{key}' in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _decode_json(response: httpx.Response, *, endpoint: str) -> object:
    """Decode a JSON response body into Python values."""
    try:
        return response.json()
    except ValueError as error:
        raise GitHubApiError(
            "Expected JSON body in GitHub response.",
            status_code=response.status_code,
            endpoint=endpoint,
        ) from error


def _json_object_list(response: httpx.Response, *, endpoint: str) -> list[dict[str, Any]]:
    """Decode a JSON response that must be an array of objects."""
    payload = _decode_json(response, endpoint=endpoint)
    if not isinstance(payload, list):
        raise GitHubApiError(
            "Expected JSON array in GitHub response.",
            status_code=500,
            endpoint=endpoint,
        )
    rows: list[dict[str, Any]] = []
    for item in payload:
        if not isinstance(item, dict):
            raise GitHubApiError(
                "Expected all array items to be JSON objects in GitHub response.",
                status_code=500,
                endpoint=endpoint,
            )
        rows.append(item)
    return rows


def _raise_http_error(response: httpx.Response, endpoint: str) -> None:
    """Raise a typed error for a non-success GitHub API response."""
    message = f"GitHub API request failed with status {response.status_code} for '{endpoint}'."
    if response.status_code == 429:
        raise GitHubRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise GitHubApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


async def rest_request(
    connection: GitHubConnection,
    url: str,
    *,
    method: str = "GET",
    json_body: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """Perform one REST call, authenticated when a token is available."""
    request_headers = dict(headers or {})
    request_headers.setdefault("Accept", GLOBAL_ID_ACCEPT_HEADER)
    token = connection.token_provider()
    if token:
        request_headers["Authorization"] = f"token {token}"

    logger.debug("github.rest.request", method=method, url=url, authenticated=bool(token))
    response = await connection.client.request(
        method,
        url,
        headers=request_headers,
        json=json_body,
    )
    if not response.is_success:
        _raise_http_error(response, url)
    return response


async def rest_json(
    connection: GitHubConnection,
    url: str,
    *,
    method: str = "GET",
    json_body: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Perform a REST call whose response is a JSON object."""
    response = await rest_request(connection, url, method=method, json_body=json_body)
    return ensure_mapping(_decode_json(response, endpoint=url), context=url)


async def graphql_request(
    connection: GitHubConnection,
    query: str,
    variables: dict[str, Any],
) -> dict[str, Any]:
    """POST one `{query, variables}` envelope and return its `data` object."""
    headers = {"Content-Type": "application/json"}
    token = connection.token_provider()
    if token:
        headers["Authorization"] = f"bearer {token}"

    endpoint = connection.graphql_url
    logger.debug("github.graphql.request", authenticated=bool(token))
    response = await connection.client.post(
        endpoint,
        headers=headers,
        json={"query": query, "variables": variables},
    )
    if not response.is_success:
        _raise_http_error(response, endpoint)

    payload = ensure_mapping(_decode_json(response, endpoint=endpoint), context=endpoint)
    errors = payload.get("errors")
    if errors:
        raise GitHubGraphQLError(errors if isinstance(errors, list) else [errors])
    return require_object(payload, key="data", endpoint=endpoint)


def parse_link_header(value: str) -> tuple[HeaderLink, ...]:
    """Parse a `Link` header into its entries, keeping duplicate relations."""
    links: list[HeaderLink] = []
    for entry in LINK_ENTRY_PATTERN.finditer(value):
        rels: tuple[str, ...] = ()
        for param in LINK_PARAM_PATTERN.finditer(entry.group("params")):
            if param.group("key").lower() != "rel":
                continue
            raw_rel = param.group("quoted")
            if raw_rel is None:
                raw_rel = param.group("bare")
            rels = tuple(raw_rel.lower().split())
        links.append(HeaderLink(uri=entry.group("uri"), rels=rels))
    return tuple(links)


def next_page_urls(response: httpx.Response) -> tuple[str, ...]:
    """Return every `next` target advertised by a response."""
    links = parse_link_header(response.headers.get("Link", ""))
    return tuple(link.uri for link in links if "next" in link.rels)


async def fetch_all_link_pages(
    connection: GitHubConnection,
    url: str,
) -> list[dict[str, Any]]:
    """Fetch a REST collection and every page reachable through a single `next` link.

    Zero or several `next` relations both end the walk; only the current page is kept.
    """
    response = await rest_request(connection, url)
    rows = _json_object_list(response, endpoint=url)
    next_urls = next_page_urls(response)
    logger.debug("github.rest.page", url=url, rows=len(rows), next_links=len(next_urls))
    if len(next_urls) != 1:
        return rows
    return rows + await fetch_all_link_pages(connection, next_urls[0])


async def fetch_all_before_cursor(
    fetch_page: CursorPageFetcher,
    before: str | None = None,
    *,
    endpoint: str = "graphql",
) -> list[dict[str, Any]]:
    """Walk a GraphQL connection backwards and return its nodes oldest-first.

    `fetch_page(before)` must return a connection object with `nodes` and
    `pageInfo { hasPreviousPage startCursor }` for the last items before `before`.
    """
    page = await fetch_page(before)
    nodes = require_object_list(page, key="nodes", endpoint=endpoint)
    page_info = require_object(page, key="pageInfo", endpoint=endpoint)
    logger.debug("github.graphql.page", before=before, nodes=len(nodes))
    if page_info.get("hasPreviousPage") is True:
        start_cursor = require_str(page_info, key="startCursor", endpoint=endpoint)
        older = await fetch_all_before_cursor(fetch_page, start_cursor, endpoint=endpoint)
        return older + nodes
    return nodes


def parse_repo_full_name(repo_full_name: str) -> tuple[str, str]:
    """Parse and validate repository input in owner/repo format."""
    owner, separator, repo = repo_full_name.strip().partition("/")
    if not separator or not owner or not repo or "/" in repo:
        raise GitHubInputError(
            f"Invalid repo '{repo_full_name}'. Expected format is owner/repo."
        )
    return owner, repo


def validate_pr_number(pr_number: int) -> int:
    """Validate and normalize pull request number input."""
    if pr_number <= 0:
        raise GitHubInputError(f"Invalid PR number '{pr_number}'. Expected a positive integer.")
    return pr_number


def parse_pull_request_reference(reference: str) -> tuple[str, str, int]:
    """Parse a pull request URL or `owner/repo#number` shorthand."""
    value = reference.strip()
    match = PULL_REQUEST_URL_PATTERN.match(value) or PULL_REQUEST_SHORTHAND_PATTERN.match(value)
    if match is None:
        raise GitHubInputError(
            f"Invalid pull request '{reference}'. "
            "Expected https://github.com/owner/repo/pull/123 or owner/repo#123."
        )
    owner, repo = parse_repo_full_name(f"{match.group('owner')}/{match.group('repo')}")
    return owner, repo, validate_pr_number(int(match.group("number")))


def get_github_token() -> str:
    """Read GitHub token from environment and fail fast if missing."""
    token, _source = get_github_token_with_source()
    return token


def get_github_token_with_source() -> tuple[str, str]:
    """Read GitHub token and return token value with environment source key."""
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    github_token = os.getenv("GITHUB_TOKEN")
    if github_token:
        return github_token, "GITHUB_TOKEN"

    gh_token = os.getenv("GH_TOKEN")
    if gh_token:
        return gh_token, "GH_TOKEN"

    message = "Missing GitHub token. Set GITHUB_TOKEN (preferred) or GH_TOKEN."
    raise GitHubAuthError(message)


def env_token_provider() -> str | None:
    """Token provider backed by the environment; returns None when logged out."""
    try:
        return get_github_token()
    except GitHubAuthError:
        return None


def build_github_client(
    timeout_seconds: float = 20,
    *,
    trust_env: bool = True,
) -> httpx.AsyncClient:
    """Build the shared async HTTP client; credentials are attached per call."""
    return httpx.AsyncClient(
        headers={"User-Agent": USER_AGENT},
        timeout=timeout_seconds,
        trust_env=trust_env,
    )
