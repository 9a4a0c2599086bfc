"""
Exporter Configuration Module

Settings come from environment variables (useful for Docker); the list of
projects to poll comes from projects.json.

Environment Variables:
    - GITLAB_URL: GitLab base URL (default: https://gitlab.com)
    - GITLAB_TOKEN: API token sent as PRIVATE-TOKEN (default: none)
    - PROJECTS_JSON_PATH: Path to projects.json (default: next to this module)
    - METRICS_PORT: Prometheus metrics server port (default: 8080)
    - METRICS_PATH: Path serving the metrics (default: /metrics)
    - POLL_INTERVAL_SECONDS: Interval between polls (default: 30)
    - MAX_REQUESTS_PER_SECOND: GitLab API rate limit (default: 10)
    - SPARSE_METRICS: Delete inactive status series instead of zeroing them (default: true)
    - DISABLE_OPENMETRICS_ENCODING: Always serve the legacy text format (default: false)
    - FETCH_PIPELINE_JOBS: Export job metrics (default: true)
    - FETCH_PIPELINE_VARIABLES: Export the pipeline variables metric (default: false)
    - PIPELINE_VARIABLES_FILTER_REGEX: Variable keys to keep (default: .*)
    - STATUSES: Comma-separated list of every possible pipeline/job status
    - DEBUG: Enable debug logging (default: false)

projects.json Format:
    [
        {"name": "group/project", "refs": ["main", "develop"]}
    ]
"""
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

# ref: https://docs.gitlab.com/ee/api/jobs.html#list-pipeline-jobs
DEFAULT_STATUSES = [
    'created',
    'waiting_for_resource',
    'preparing',
    'pending',
    'running',
    'success',
    'failed',
    'canceled',
    'skipped',
    'manual',
    'scheduled',
]


def env_flag(name, default='false'):
    return os.getenv(name, default).lower() in ('true', '1', 'yes', 'on')


@dataclass
class Settings:
    gitlab_url: str = 'https://gitlab.com'
    gitlab_token: str = ''
    projects_json_path: str = ''
    metrics_port: int = 8080
    metrics_path: str = '/metrics'
    poll_interval_seconds: int = 30
    max_requests_per_second: float = 10
    sparse_metrics: bool = True
    disable_openmetrics_encoding: bool = False
    fetch_pipeline_jobs: bool = True
    fetch_pipeline_variables: bool = False
    pipeline_variables_filter: re.Pattern = field(default_factory=lambda: re.compile('.*'))
    statuses: List[str] = field(default_factory=lambda: list(DEFAULT_STATUSES))
    debug: bool = False


def load_settings() -> Settings:
    """
    Read settings from the environment.

    Raises:
        re.error: if PIPELINE_VARIABLES_FILTER_REGEX is not a valid regex
        ValueError: if a numeric variable is not a number or STATUSES is empty
    """
    statuses = [s.strip() for s in os.getenv('STATUSES', ','.join(DEFAULT_STATUSES)).split(',') if s.strip()]
    if not statuses:
        raise ValueError("STATUSES must list at least one status")

    return Settings(
        gitlab_url=os.getenv('GITLAB_URL', 'https://gitlab.com'),
        gitlab_token=os.getenv('GITLAB_TOKEN', ''),
        projects_json_path=os.getenv(
            'PROJECTS_JSON_PATH', os.path.join(os.path.dirname(__file__), 'projects.json')
        ),
        metrics_port=int(os.getenv('METRICS_PORT', 8080)),
        metrics_path=os.getenv('METRICS_PATH', '/metrics'),
        poll_interval_seconds=int(os.getenv('POLL_INTERVAL_SECONDS', 30)),
        max_requests_per_second=float(os.getenv('MAX_REQUESTS_PER_SECOND', 10)),
        sparse_metrics=env_flag('SPARSE_METRICS', 'true'),
        disable_openmetrics_encoding=env_flag('DISABLE_OPENMETRICS_ENCODING'),
        fetch_pipeline_jobs=env_flag('FETCH_PIPELINE_JOBS', 'true'),
        fetch_pipeline_variables=env_flag('FETCH_PIPELINE_VARIABLES'),
        pipeline_variables_filter=re.compile(os.getenv('PIPELINE_VARIABLES_FILTER_REGEX', '.*')),
        statuses=statuses,
        debug=env_flag('DEBUG'),
    )


def load_projects(path) -> List[Dict[str, Any]]:
    """
    Load the projects to poll.

    Args:
        path: Path to projects.json

    Returns:
        List of {'name': str, 'refs': [str, ...]} dictionaries

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: if an entry has no name
    """
    if not os.path.exists(path):
        raise FileNotFoundError(
            f"projects.json not found at {path}. "
            "Please create a projects.json file listing the projects to monitor "
            "(see projects.json.example), or mount it as a volume when running in Docker."
        )

    with open(path, 'r', encoding='utf-8') as f:
        raw = json.load(f)

    projects = []
    for item in raw:
        if not item.get('name'):
            raise ValueError(f"project entry without a name in {path}: {item}")
        projects.append({
            'name': item['name'],
            'refs': item.get('refs') or ['main'],
        })
    logger.info(f"Loaded {len(projects)} project(s) from {path}")
    return projects
