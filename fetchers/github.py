"""GitHub API gateway with request pacing and failure classification.

Every GitHub call made by the pipeline goes through GitHubGateway:
- pacing: a per-hour request budget (with a safety margin) and a minimum
  delay between requests, tracked in a RateLimitState owned by the gateway
- retries: 429 responses honor Retry-After, transport failures back off linearly
- classification: 401/403 -> AuthenticationFailed, 404 -> NotFound,
  exhausted 429 -> RateLimitExceeded
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional

import requests

from models.data_models import LanguageBreakdown
from pipeline.exceptions import (
    AuthenticationFailed,
    CeilingKind,
    GitHubApiError,
    NotFound,
    RateLimitExceeded,
    ResourceCeilingExceeded,
    TransientNetworkFailure,
)

logger = logging.getLogger(__name__)


HOUR_SECONDS = 3600.0

ISSUE_LABEL_COUNT_QUERY = """
query($owner: String!, $name: String!, $label: String!) {
  repository(owner: $owner, name: $name) {
    issues(labels: [$label], states: OPEN) {
      totalCount
    }
  }
}
"""


@dataclass
class RateLimitState:
    """Request counters for one rolling hour window."""
    requests_this_window: int = 0
    window_start: float = 0.0
    last_request_at: Optional[float] = None


class RateLimiter:
    """
    Proactive pacing for GitHub requests.

    Each limiter owns its own RateLimitState; gateways only share pacing
    when they are handed the same limiter instance.
    """

    def __init__(
        self,
        max_per_hour: int = 5000,
        safety_margin: int = 100,
        min_delay: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        state: Optional[RateLimitState] = None,
    ):
        self.max_per_hour = max_per_hour
        self.safety_margin = safety_margin
        self.min_delay = min_delay
        self.clock = clock
        self.sleep = sleep
        self.state = state or RateLimitState(window_start=clock())

    @property
    def threshold(self) -> int:
        return max(self.max_per_hour - self.safety_margin, 1)

    def acquire(self) -> None:
        """
        Block until the next request may be sent, then record it.

        The counter and timestamp are updated before the request goes out,
        so retries are paced the same as first attempts.
        """
        state = self.state
        now = self.clock()

        if now - state.window_start >= HOUR_SECONDS:
            state.requests_this_window = 0
            state.window_start = now

        if state.requests_this_window >= self.threshold:
            wait = HOUR_SECONDS - (now - state.window_start)
            if wait > 0:
                logger.warning(
                    f"⏳ Hourly request budget reached ({state.requests_this_window}/"
                    f"{self.max_per_hour}), waiting {wait / 60:.1f} minutes for the window to reset"
                )
                self.sleep(wait)
            now = self.clock()
            state.requests_this_window = 0
            state.window_start = now
        elif state.last_request_at is not None:
            elapsed = now - state.last_request_at
            if elapsed < self.min_delay:
                self.sleep(self.min_delay - elapsed)
                now = self.clock()

        state.requests_this_window += 1
        state.last_request_at = now

    def stats(self) -> dict[str, int]:
        return {
            "requests_made": self.state.requests_this_window,
            "remaining": max(self.max_per_hour - self.state.requests_this_window, 0),
            "max_per_hour": self.max_per_hour,
        }


class GitHubGateway:
    """Single point of contact with the GitHub REST and GraphQL APIs."""

    def __init__(
        self,
        token: str,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 3,
        default_retry_after: float = 60.0,
        network_backoff: float = 1.0,
        max_issue_pages: int = 100,
        request_budget: Optional[int] = None,
        timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize GitHub API gateway.

        Args:
            token: GitHub personal access token for authentication
            rate_limiter: Pacing state for this gateway (a fresh one by default)
            max_retries: Retry budget for 429 responses and transport failures
            default_retry_after: Seconds to wait on 429 without a Retry-After header
            network_backoff: Base of the linear backoff for transport failures
            max_issue_pages: Safety cap on paginated issue listings
            request_budget: Optional ceiling on requests for this gateway's lifetime.
                            Reaching it raises ResourceCeilingExceeded.
            timeout: Per-request timeout in seconds
            sleep: Sleep function (injected in tests)
        """
        self.token = token
        self.base_url = "https://api.github.com"
        self.graphql_url = f"{self.base_url}/graphql"
        self.headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "Contribot-Scraper",
        }
        self.rate_limiter = rate_limiter or RateLimiter(sleep=sleep)
        self.max_retries = max_retries
        self.default_retry_after = default_retry_after
        self.network_backoff = network_backoff
        self.max_issue_pages = max_issue_pages
        self.request_budget = request_budget
        self.timeout = timeout
        self.sleep = sleep
        self.requests_sent = 0

    def _send(self, method: str, url: str, params: Optional[dict], payload: Optional[dict]) -> requests.Response:
        if method == "POST":
            return requests.post(url, headers=self.headers, json=payload, timeout=self.timeout)
        return requests.get(url, headers=self.headers, params=params, timeout=self.timeout)

    def _execute(
        self,
        method: str,
        url: str,
        params: Optional[dict] = None,
        payload: Optional[dict] = None,
    ) -> Any:
        """Send a request with pacing, retries and error classification.

        Returns:
            Decoded JSON body

        Raises:
            AuthenticationFailed: On 401/403
            NotFound: On 404
            RateLimitExceeded: When 429 persists past the retry budget
            TransientNetworkFailure: When transport failures persist past the retry budget
            ResourceCeilingExceeded: When the per-invocation request budget is used up
            GitHubApiError: On any other non-success status
        """
        attempt = 0
        while True:
            if self.request_budget is not None and self.requests_sent >= self.request_budget:
                raise ResourceCeilingExceeded(
                    f"GitHub request budget of {self.request_budget} exhausted",
                    kind=CeilingKind.REQUEST_BUDGET,
                )

            self.rate_limiter.acquire()
            self.requests_sent += 1

            try:
                response = self._send(method, url, params, payload)
            except (requests.ConnectionError, requests.Timeout) as e:
                if attempt >= self.max_retries:
                    raise TransientNetworkFailure(
                        f"Network failure calling {url} after {attempt + 1} attempts: {e}"
                    ) from e
                attempt += 1
                backoff = self.network_backoff * attempt
                logger.warning(f"Network error ({e}), retrying in {backoff:.1f}s (attempt {attempt}/{self.max_retries})")
                self.sleep(backoff)
                continue

            # Log rate limit info
            remaining = response.headers.get("X-RateLimit-Remaining")
            limit = response.headers.get("X-RateLimit-Limit")
            if remaining and limit:
                logger.debug(f"Rate limit: {remaining}/{limit} remaining")

            if response.status_code == 429:
                retry_after = self._retry_after(response)
                if attempt >= self.max_retries:
                    raise RateLimitExceeded(
                        f"Rate limit exceeded after {self.max_retries} retries",
                        retry_after=retry_after,
                    )
                attempt += 1
                logger.warning(f"⏳ Rate limited! Waiting {retry_after:.0f}s (attempt {attempt}/{self.max_retries})")
                self.sleep(retry_after)
                continue

            if response.status_code in (401, 403):
                logger.error(f"Authentication error: {response.status_code} - {response.text[:200]}")
                raise AuthenticationFailed("GitHub authentication failed: invalid or expired token")

            if response.status_code == 404:
                raise NotFound(f"Not found: {url}")

            if not response.ok:
                raise GitHubApiError(
                    f"GitHub API error {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )

            return response.json()

    def _retry_after(self, response: requests.Response) -> float:
        header = response.headers.get("Retry-After")
        try:
            return float(header) if header else self.default_retry_after
        except ValueError:
            return self.default_retry_after

    def request(self, path: str, params: Optional[dict] = None) -> Any:
        """GET a REST endpoint (path relative to the API root, e.g. "/repos/o/n")."""
        return self._execute("GET", f"{self.base_url}{path}", params=params)

    def graphql(self, query: str, variables: Optional[dict] = None) -> dict[str, Any]:
        """
        Run a GraphQL query.

        Returns:
            The "data" object of the response

        Raises:
            GitHubApiError: If the response carries GraphQL errors
        """
        body = self._execute("POST", self.graphql_url, payload={"query": query, "variables": variables or {}})
        errors = body.get("errors")
        if errors:
            messages = "; ".join(err.get("message", "unknown error") for err in errors)
            if any(err.get("type") == "NOT_FOUND" for err in errors):
                raise NotFound(f"GraphQL: {messages}")
            raise GitHubApiError(f"GraphQL errors: {messages}")
        return body.get("data") or {}

    def fetch_languages(self, owner: str, repo: str) -> LanguageBreakdown:
        """Fetch repository languages ordered by byte volume.

        Returns:
            LanguageBreakdown; empty (not an error) when GitHub reports no languages
        """
        raw = self.request(f"/repos/{owner}/{repo}/languages") or {}
        ordered = [lang for lang, _ in sorted(raw.items(), key=lambda item: item[1], reverse=True)]
        if not ordered:
            logger.debug(f"No languages reported for {owner}/{repo}")
        return LanguageBreakdown(ordered=ordered, raw=raw)

    def fetch_issue_label_count(self, owner: str, repo: str, label: str) -> int:
        """Count open issues carrying `label` with a single GraphQL query.

        Raises:
            NotFound: If the repository is missing or inaccessible
        """
        data = self.graphql(
            ISSUE_LABEL_COUNT_QUERY,
            {"owner": owner, "name": repo, "label": label},
        )
        repository = data.get("repository")
        if repository is None:
            raise NotFound(f"Repository {owner}/{repo} not found or inaccessible")
        return repository["issues"]["totalCount"]

    def fetch_issues(
        self,
        owner: str,
        repo: str,
        label: str,
        state: str = "open",
        page: int = 1,
        per_page: int = 100,
    ) -> list[dict[str, Any]]:
        """Fetch one page of the issue listing (pull requests included)."""
        params = {
            "labels": label,
            "state": state,
            "page": page,
            "per_page": per_page,
        }
        return self.request(f"/repos/{owner}/{repo}/issues", params=params)

    def fetch_all_issues(self, owner: str, repo: str, label: str, state: str = "open") -> list[dict[str, Any]]:
        """Fetch every page of the issue listing up to `max_issue_pages`.

        Stops at the first empty page. Hitting the page cap is logged,
        not raised: a runaway repository must not starve the run.
        """
        all_issues: list[dict[str, Any]] = []
        for page in range(1, self.max_issue_pages + 1):
            issues = self.fetch_issues(owner, repo, label, state=state, page=page)
            if not issues:
                break
            all_issues.extend(issues)
            logger.debug(f"{owner}/{repo} page {page}: {len(issues)} issues (total: {len(all_issues)})")
        else:
            logger.warning(
                f"Reached max page limit ({self.max_issue_pages}) for {owner}/{repo}. "
                f"Some issues may be missing."
            )

        return all_issues

    def fetch_issue(self, owner: str, repo: str, issue_number: int) -> dict[str, Any]:
        """Fetch a single issue.

        Raises:
            NotFound: If the issue does not exist (or was transferred/deleted)
        """
        return self.request(f"/repos/{owner}/{repo}/issues/{issue_number}")

    def batch_fetch_issues(self, owner: str, repo: str, numbers: Iterable[int]) -> dict[int, dict[str, Any]]:
        """Fetch the current state of exactly these issue numbers.

        Numbers that cannot be fetched are left out of the result and logged.

        Raises:
            AuthenticationFailed: Propagated, the credential is unusable
            ResourceCeilingExceeded: Propagated, the run must pause
        """
        results: dict[int, dict[str, Any]] = {}
        for number in numbers:
            try:
                results[number] = self.fetch_issue(owner, repo, number)
            except NotFound:
                logger.info(f"Issue {owner}/{repo}#{number} not found on re-fetch")
            except (RateLimitExceeded, TransientNetworkFailure, GitHubApiError) as e:
                logger.warning(f"Could not re-fetch {owner}/{repo}#{number}: {e}")
        return results

    def get_rate_limit_stats(self) -> dict[str, int]:
        """Request counters for this gateway (window usage plus lifetime total)."""
        stats = self.rate_limiter.stats()
        stats["requests_sent"] = self.requests_sent
        return stats
