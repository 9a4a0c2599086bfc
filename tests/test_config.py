"""Tests for environment and projects.json configuration."""
import json
import re

import pytest

from config import DEFAULT_STATUSES, load_projects, load_settings

ENV_VARS = [
    'GITLAB_URL', 'GITLAB_TOKEN', 'PROJECTS_JSON_PATH', 'METRICS_PORT', 'METRICS_PATH',
    'POLL_INTERVAL_SECONDS', 'MAX_REQUESTS_PER_SECOND', 'SPARSE_METRICS',
    'DISABLE_OPENMETRICS_ENCODING', 'FETCH_PIPELINE_JOBS', 'FETCH_PIPELINE_VARIABLES',
    'PIPELINE_VARIABLES_FILTER_REGEX', 'STATUSES', 'DEBUG',
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = load_settings()
    assert settings.gitlab_url == 'https://gitlab.com'
    assert settings.metrics_port == 8080
    assert settings.sparse_metrics is True
    assert settings.disable_openmetrics_encoding is False
    assert settings.fetch_pipeline_variables is False
    assert settings.statuses == DEFAULT_STATUSES
    assert settings.pipeline_variables_filter.pattern == '.*'


def test_overrides(monkeypatch):
    monkeypatch.setenv('SPARSE_METRICS', 'off')
    monkeypatch.setenv('DISABLE_OPENMETRICS_ENCODING', 'Yes')
    monkeypatch.setenv('PIPELINE_VARIABLES_FILTER_REGEX', '^CI_')
    monkeypatch.setenv('STATUSES', 'success, failed ,,running')
    monkeypatch.setenv('MAX_REQUESTS_PER_SECOND', '2.5')

    settings = load_settings()

    assert settings.sparse_metrics is False
    assert settings.disable_openmetrics_encoding is True
    assert settings.pipeline_variables_filter.search('CI_ENV')
    assert not settings.pipeline_variables_filter.search('SECRET')
    assert settings.statuses == ['success', 'failed', 'running']
    assert settings.max_requests_per_second == 2.5


def test_invalid_filter_regex(monkeypatch):
    monkeypatch.setenv('PIPELINE_VARIABLES_FILTER_REGEX', '(unclosed')
    with pytest.raises(re.error):
        load_settings()


def test_empty_statuses(monkeypatch):
    monkeypatch.setenv('STATUSES', ' , ')
    with pytest.raises(ValueError):
        load_settings()


def test_load_projects(tmp_path):
    path = tmp_path / 'projects.json'
    path.write_text(json.dumps([
        {'name': 'group/app', 'refs': ['main', 'develop']},
        {'name': 'group/lib'},
    ]))

    assert load_projects(str(path)) == [
        {'name': 'group/app', 'refs': ['main', 'develop']},
        {'name': 'group/lib', 'refs': ['main']},
    ]


def test_load_projects_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_projects(str(tmp_path / 'missing.json'))


def test_load_projects_without_name(tmp_path):
    path = tmp_path / 'projects.json'
    path.write_text(json.dumps([{'refs': ['main']}]))
    with pytest.raises(ValueError):
        load_projects(str(path))
