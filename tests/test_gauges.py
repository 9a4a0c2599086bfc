"""Tests for the metric registry and its exposition handler."""
from wsgiref.util import setup_testing_defaults

import pytest
from prometheus_client.openmetrics.parser import text_string_to_metric_families as parse_openmetrics
from prometheus_client.parser import text_string_to_metric_families as parse_text

from exceptions import RegistrationError
from gauges import Registry, variable_labelled_counter

OPENMETRICS_ACCEPT = 'application/openmetrics-text; version=1.0.0,text/plain;version=0.0.4;q=0.5'
COVERAGE_LABELS = {'project': 'group/app', 'topics': 'go', 'ref': 'main'}


def scrape(handler, accept='', method='GET'):
    captured = {}

    def start_response(status, headers):
        captured['status'] = status
        captured['headers'] = dict(headers)

    environ = {'REQUEST_METHOD': method, 'PATH_INFO': '/metrics', 'HTTP_ACCEPT': accept}
    setup_testing_defaults(environ)
    body = b''.join(handler(environ, start_response)).decode('utf-8')
    return captured['status'], captured['headers'], body


def samples(families, name):
    return [(s.labels, s.value) for f in families if f.name == name for s in f.samples]


def test_register_default_metrics_twice_fails():
    registry = Registry()
    registry.register_default_metrics()
    with pytest.raises(RegistrationError) as excinfo:
        registry.register_default_metrics()
    assert excinfo.value.metric_name == 'gitlab_ci_pipeline_coverage'
    assert 'gitlab_ci_pipeline_coverage' in str(excinfo.value)
    assert isinstance(excinfo.value.cause, ValueError)


def test_registries_are_independent():
    first = Registry()
    second = Registry()
    first.register_default_metrics()
    second.register_default_metrics()

    first.run_count.labels('group/app', '', 'main').inc()

    labels = {'project': 'group/app', 'topics': '', 'ref': 'main'}
    assert first.registry.get_sample_value('gitlab_ci_pipeline_run_count', labels) == 1.0
    assert second.registry.get_sample_value('gitlab_ci_pipeline_run_count', labels) is None


def test_every_family_is_registered(registry):
    names = {metric.name for metric in registry.registry.collect()}
    assert names == {
        'gitlab_ci_pipeline_coverage',
        'gitlab_ci_pipeline_last_run_duration_seconds',
        'gitlab_ci_pipeline_last_job_run_duration_seconds',
        'gitlab_ci_pipeline_last_job_run_status',
        'gitlab_ci_pipeline_last_job_run_artifact_size',
        'gitlab_ci_pipeline_time_since_last_job_run_seconds',
        'gitlab_ci_pipeline_job_run_count',
        'gitlab_ci_pipeline_last_run_id',
        'gitlab_ci_pipeline_last_run_status',
        'gitlab_ci_pipeline_run_count',
        'gitlab_ci_pipeline_time_since_last_run_seconds',
        'gitlab_ci_pipeline_run_count_with_variable',
        'gitlab_ci_pipeline_unrecognized_status_count',
    }


def test_metrics_handler_serves_openmetrics_when_requested(registry):
    registry.coverage.labels('group/app', 'go', 'main').set(87.5)

    status, headers, body = scrape(registry.metrics_handler(), OPENMETRICS_ACCEPT)

    assert status == '200 OK'
    assert headers['Content-Type'].startswith('application/openmetrics-text')
    assert body.endswith('# EOF\n')
    families = list(parse_openmetrics(body))
    assert samples(families, 'gitlab_ci_pipeline_coverage') == [(COVERAGE_LABELS, 87.5)]


def test_metrics_handler_falls_back_to_text_format_without_accept(registry):
    registry.coverage.labels('group/app', 'go', 'main').set(87.5)

    _, headers, body = scrape(registry.metrics_handler(use_open_metrics=True))

    assert headers['Content-Type'].startswith('text/plain')
    assert '# EOF' not in body
    assert samples(parse_text(body), 'gitlab_ci_pipeline_coverage') == [(COVERAGE_LABELS, 87.5)]


def test_metrics_handler_with_openmetrics_disabled(registry):
    registry.coverage.labels('group/app', 'go', 'main').set(87.5)

    _, headers, body = scrape(registry.metrics_handler(use_open_metrics=False), OPENMETRICS_ACCEPT)

    assert headers['Content-Type'].startswith('text/plain')
    assert '# EOF' not in body
    assert samples(parse_text(body), 'gitlab_ci_pipeline_coverage') == [(COVERAGE_LABELS, 87.5)]


def test_text_format_handler_answers_head_without_body(registry):
    status, headers, body = scrape(registry.metrics_handler(use_open_metrics=False), method='HEAD')

    assert status == '200 OK'
    assert int(headers['Content-Length']) > 0
    assert body == ''


def test_variable_labelled_counter_is_not_registered(registry, sample):
    gauge = variable_labelled_counter('gitlab_ci_custom_variables', ['project', 'variables'])
    gauge.labels('group/app', 'A').inc()

    assert sample('gitlab_ci_custom_variables', {'project': 'group/app', 'variables': 'A'}) is None

    registry.registry.register(gauge)
    assert sample('gitlab_ci_custom_variables', {'project': 'group/app', 'variables': 'A'}) == 1.0
