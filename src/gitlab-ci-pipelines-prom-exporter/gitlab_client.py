"""
GitLab API Client Module

Thin client over the GitLab REST API (v4) returning the raw JSON payloads the
exporter needs.

Functions:
    - create_retry_session: requests session with retry logic

GitLabClient methods:
    - get_project: Project details (topics / tag_list)
    - get_latest_pipeline: Most recent pipeline of a ref, or None
    - get_pipeline_jobs: Every job of a pipeline
    - get_pipeline_variables: Variables a pipeline was triggered with

Error Handling:
    - Network errors (timeouts, connection failures) with automatic retry (3 attempts)
    - Exponential backoff between retries (0.5s base factor)
    - Retries on: read timeouts, connection timeouts, 429 and 5xx HTTP status codes
    - Anything still failing is raised as a requests exception; callers wrap
      it into FetchError
"""
import logging
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 15
PER_PAGE = 100


def create_retry_session(retries=3, backoff_factor=0.5, status_forcelist=(429, 500, 502, 503, 504)):
    """
    Create a requests session with retry logic.

    Args:
        retries: Number of retry attempts (default: 3)
        backoff_factor: Backoff factor for exponential delay between retries (default: 0.5)
        status_forcelist: HTTP status codes to retry on (default: 429, 500, 502, 503, 504)

    Returns:
        requests.Session object configured with retry adapter
    """
    session = requests.Session()
    retry_strategy = Retry(
        total=retries,
        read=retries,  # Retry on read timeouts
        connect=retries,  # Retry on connection timeouts
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
        allowed_methods=["GET"]  # The client only ever reads
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def encode_project(project):
    """Project IDs pass through, paths are URL-encoded ('group/app' -> 'group%2Fapp')."""
    return quote(str(project), safe='')


class GitLabClient:
    def __init__(self, url, token, session=None):
        self.base_url = url.rstrip('/') + '/api/v4'
        self.session = session or create_retry_session()
        self.headers = {'User-Agent': 'GitLabCIPipelinesExporter/1.0'}
        # Anonymous access works for public projects
        if token:
            self.headers['PRIVATE-TOKEN'] = token

    def _get(self, path, params=None):
        response = self.session.get(
            f"{self.base_url}{path}",
            params=params,
            headers=self.headers,
            timeout=REQUEST_TIMEOUT
        )
        response.raise_for_status()
        return response

    def _get_all(self, path, params=None):
        """Follow X-Next-Page until the last page."""
        base_params = dict(params or {}, per_page=PER_PAGE)
        page = '1'
        items = []
        while page:
            response = self._get(path, dict(base_params, page=page))
            items.extend(response.json())
            # X-Next-Page is empty on the last page
            page = response.headers.get('X-Next-Page', '')
        logger.debug(f"GET {path}: {len(items)} item(s)")
        return items

    def get_project(self, project):
        return self._get(f"/projects/{encode_project(project)}").json()

    def get_latest_pipeline(self, project, ref):
        """
        Get the most recent pipeline of a ref with its full details.

        Returns:
            Pipeline dictionary, or None when the ref never ran a pipeline
        """
        pipelines = self._get(
            f"/projects/{encode_project(project)}/pipelines",
            {'ref': ref, 'per_page': 1, 'order_by': 'id', 'sort': 'desc'}
        ).json()
        if not pipelines:
            return None
        return self._get(f"/projects/{encode_project(project)}/pipelines/{pipelines[0]['id']}").json()

    def get_pipeline_jobs(self, project, pipeline_id):
        return self._get_all(f"/projects/{encode_project(project)}/pipelines/{pipeline_id}/jobs")

    def get_pipeline_variables(self, project, pipeline_id):
        return self._get(f"/projects/{encode_project(project)}/pipelines/{pipeline_id}/variables").json()
