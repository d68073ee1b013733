"""
Jira REST API Client Module
Handles communication with the Jira Cloud search API: cursor pagination,
rate limiting and the per-page retry policy.
"""

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Generator, List, Optional
from urllib.parse import urljoin

import pytz
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from jira_sync.config_manager import FieldMap, JiraSettings, RetrySettings
from jira_sync.exceptions import AuthFailed, FetchFailed
from jira_sync.utils.logger import get_logger
from jira_sync.watermark import SyncWindow

logger = get_logger(__name__)

TRANSIENT_STATUSES = (429, 500, 502, 503, 504)

# Standard fields every search requests; custom field ids are added from FieldMap
STANDARD_FIELDS = [
    'summary', 'description', 'status', 'priority', 'resolution',
    'assignee', 'reporter', 'created', 'updated', 'resolutiondate',
    'duedate', 'project', 'issuetype',
]


class JiraAPIError(Exception):
    """Custom exception for Jira API errors."""

    def __init__(self, message: str, status_code: int = None, response: dict = None, attempts: int = 1):
        self.message = message
        self.status_code = status_code
        self.response = response
        self.attempts = attempts
        super().__init__(self.message)


class PageRetry(Retry):
    """
    urllib3 retry that caps Retry-After waits at backoff_max and logs each
    retried attempt.
    """

    def get_retry_after(self, response):
        retry_after = super().get_retry_after(response)
        if retry_after is None:
            return None
        return min(retry_after, self.backoff_max)

    def increment(self, *args, **kwargs):
        new_retry = super().increment(*args, **kwargs)
        last = new_retry.history[-1]
        reason = f"HTTP {last.status}" if last.status else type(last.error).__name__
        logger.warning(f"Jira request attempt {len(new_retry.history)} failed ({reason}); retrying")
        return new_retry


def build_retry(settings: RetrySettings) -> Retry:
    """Build the adapter retry strategy; one attempt plus max_attempts - 1 retries."""
    return PageRetry(
        total=max(settings.max_attempts, 1) - 1,
        backoff_factor=settings.backoff_base,
        backoff_max=settings.backoff_max,
        status_forcelist=TRANSIENT_STATUSES,
        allowed_methods=['GET', 'POST'],
        respect_retry_after_header=True,
        raise_on_status=True
    )


@dataclass
class IssuePage:
    """One page of search results."""
    index: int
    issues: List[Dict] = field(default_factory=list)
    next_page_token: Optional[str] = None


class JiraClient:
    """
    Jira REST API client with cursor pagination, rate limiting and retries.
    """

    def __init__(
        self,
        settings: JiraSettings,
        retry: RetrySettings = None,
        session: requests.Session = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize Jira client.

        Args:
            settings: Connection settings (credentials are never logged)
            retry: Per-page retry settings, mounted on the session adapter
            session: Optional pre-built session
            sleep: Sleep function for rate limiting, injectable for tests
            clock: Monotonic clock, injectable for tests
        """
        self.base_url = settings.url.rstrip('/')
        self.requests_per_second = settings.requests_per_second
        self.request_timeout = settings.request_timeout
        self.retry = retry or RetrySettings()

        self._settings = settings
        self._sleep = sleep
        self._clock = clock
        self._deadline: Optional[float] = None
        self._last_request_time = 0.0
        self._session = session or self._create_session()

        logger.info("Jira client initialized")

    def _create_session(self) -> requests.Session:
        """Create requests session with retry logic."""
        session = requests.Session()

        session.auth = (self._settings.username, self._settings.api_token)

        session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json'
        })

        adapter = HTTPAdapter(max_retries=build_retry(self.retry))
        session.mount('https://', adapter)
        session.mount('http://', adapter)

        return session

    def set_deadline(self, deadline: Optional[float]) -> None:
        """Bound all further requests by a monotonic-clock deadline."""
        self._deadline = deadline

    def _remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return self._deadline - self._clock()

    def _rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        if self.requests_per_second <= 0:
            return

        min_interval = 1.0 / self.requests_per_second
        elapsed = self._clock() - self._last_request_time

        if elapsed < min_interval:
            self._sleep(min_interval - elapsed)

        self._last_request_time = self._clock()

    def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Dict = None,
        json_data: Dict = None
    ) -> Dict:
        """
        Make HTTP request to Jira API. Transient failures are retried by the
        session adapter before this returns or raises.

        Raises:
            JiraAPIError: If the request fails
        """
        self._rate_limit()

        url = urljoin(f"{self.base_url}/rest/", endpoint)

        timeout = self.request_timeout
        remaining = self._remaining()
        if remaining is not None:
            if remaining <= 0:
                raise JiraAPIError("Run time budget exhausted", attempts=0)
            timeout = min(timeout, remaining)

        exhausted = max(self.retry.max_attempts, 1)
        try:
            response = self._session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=timeout
            )
        except requests.exceptions.RetryError as e:
            raise JiraAPIError(f"Retries exhausted: {_retry_reason(e)}", attempts=exhausted) from e
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise JiraAPIError(f"Request failed: {type(e).__name__}", attempts=exhausted) from e
        except requests.exceptions.RequestException as e:
            raise JiraAPIError(f"Request failed: {type(e).__name__}") from e

        if response.status_code == 401:
            raise JiraAPIError("Authentication failed. Check your credentials.", 401)
        elif response.status_code == 403:
            raise JiraAPIError("Access forbidden. Check permissions.", 403)
        elif response.status_code >= 400:
            raise JiraAPIError(
                f"API error: HTTP {response.status_code}: {response.text[:500]}",
                response.status_code
            )

        try:
            return response.json() if response.text else {}
        except ValueError as e:
            raise JiraAPIError("Response is not valid JSON", response.status_code) from e

    # ========================================
    # Search
    # ========================================

    def search_page(
        self,
        jql: str,
        fields: List[str],
        page_size: int,
        next_page_token: Optional[str] = None,
        page_index: int = 0
    ) -> IssuePage:
        """
        Fetch one page of issues from POST /api/3/search/jql.

        Args:
            jql: JQL query string
            fields: Fields to include
            page_size: Maximum issues in the page
            next_page_token: Continuation cursor from the previous page
            page_index: Zero-based page number, for error context

        Returns:
            IssuePage

        Raises:
            AuthFailed: On 401/403, without retrying
            FetchFailed: On any other error, after the adapter's retries
        """
        json_data = {
            'jql': jql.replace('\n', ' ').strip(),
            'fields': fields,
            'maxResults': page_size
        }
        if next_page_token:
            json_data['nextPageToken'] = next_page_token

        try:
            response = self._make_request('POST', 'api/3/search/jql', json_data=json_data)
        except JiraAPIError as e:
            if e.status_code in (401, 403):
                raise AuthFailed(e.message, status_code=e.status_code, page_index=page_index) from e
            raise FetchFailed(
                e.message,
                status_code=e.status_code,
                page_index=page_index,
                attempts=e.attempts
            ) from e

        issues = response.get('issues') or []
        token = response.get('nextPageToken')
        if response.get('isLast'):
            token = None

        return IssuePage(index=page_index, issues=issues, next_page_token=token)

    def close(self) -> None:
        self._session.close()


def build_window_jql(window: SyncWindow, jql_filter: str = '', timezone: str = 'UTC') -> str:
    """
    Build the JQL for a window.

    Jira reads JQL dates in the querying account's timezone and compares at
    minute precision, so the lower bound is converted to that timezone and
    floored to the minute; records just before `since` may be fetched again.
    """
    since_str = window.since.astimezone(pytz.timezone(timezone)).strftime('%Y-%m-%d %H:%M')
    clauses = []
    if jql_filter:
        clauses.append(f"({jql_filter})")
    clauses.append(f'updated >= "{since_str}"')
    return ' AND '.join(clauses) + ' ORDER BY updated ASC, key ASC'


def search_fields(field_map: FieldMap) -> List[str]:
    """Fields requested from the search endpoint."""
    custom = [
        field_map.team,
        field_map.filiale,
        field_map.time_to_resolution,
        field_map.time_to_first_response,
    ]
    return STANDARD_FIELDS + [f for f in custom if f]


def fetch_pages(
    client: JiraClient,
    window: SyncWindow,
    page_size: int,
    fields: List[str],
    jql_filter: str = '',
    timezone: str = 'UTC'
) -> Generator[IssuePage, None, None]:
    """
    Lazily yield non-empty pages of issues updated inside the window.

    The sequence ends when the server returns no cursor, returns fewer issues
    than the page size, or returns an empty page. Pages are requested strictly
    in cursor order; the generator cannot be restarted.

    Raises:
        AuthFailed: Credentials rejected
        FetchFailed: A page failed after exhausting retries
    """
    jql = build_window_jql(window, jql_filter, timezone)
    logger.info(f"Fetching issues with JQL: {jql[:200]}")

    token = None
    page_index = 0

    while True:
        page = client.search_page(jql, fields, page_size, next_page_token=token, page_index=page_index)

        if not page.issues:
            break

        yield page

        if len(page.issues) < page_size or not page.next_page_token:
            break

        if page.next_page_token == token:
            logger.warning(f"Cursor did not advance after page {page_index}; stopping")
            break

        token = page.next_page_token
        page_index += 1
        logger.debug(f"Fetched page {page_index}, getting next page...")


def _retry_reason(error: requests.exceptions.RetryError) -> str:
    """Reason urllib3 gave up, without the request URL."""
    reason = getattr(error.args[0], 'reason', None) if error.args else None
    return str(reason) if reason is not None else 'too many failed attempts'
