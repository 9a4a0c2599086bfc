"""
Prometheus Metrics Definitions Module - GitLab CI Pipelines Exporter

This module defines all Prometheus Gauge metrics for the GitLab CI pipelines
Prometheus exporter. The gauges are owned by a Registry instance; the exporter
creates exactly one at startup and passes it to everything that emits metrics.

Metrics:
    - gitlab_ci_pipeline_coverage: Coverage of the most recent pipeline
        Labels: project, topics, ref

    - gitlab_ci_pipeline_last_run_duration_seconds: Duration of last pipeline run
        Labels: project, topics, ref

    - gitlab_ci_pipeline_last_job_run_duration_seconds: Duration of last job run
        Labels: project, topics, ref, stage, job_name

    - gitlab_ci_pipeline_last_job_run_status: Status of the most recent job
        Labels: project, topics, ref, stage, job_name, status
        Values: 1 for the observed status, 0 (or absent in sparse mode) otherwise

    - gitlab_ci_pipeline_last_job_run_artifact_size: Filesize of the most recent job artifacts
        Labels: project, topics, ref, stage, job_name

    - gitlab_ci_pipeline_time_since_last_job_run_seconds: Elapsed time since most recent job run
        Labels: project, topics, ref, stage, job_name

    - gitlab_ci_pipeline_job_run_count: Job run count
        Labels: project, topics, ref, stage, job_name

    - gitlab_ci_pipeline_last_run_id: ID of the most recent pipeline
        Labels: project, topics, ref

    - gitlab_ci_pipeline_last_run_status: Status of the most recent pipeline
        Labels: project, topics, ref, status
        Values: 1 for the observed status, 0 (or absent in sparse mode) otherwise

    - gitlab_ci_pipeline_run_count: Pipeline run count
        Labels: project, topics, ref

    - gitlab_ci_pipeline_time_since_last_run_seconds: Elapsed time since most recent pipeline run
        Labels: project, topics, ref

    - gitlab_ci_pipeline_run_count_with_variable: Count of pipelines with variables
        Labels: project, topics, ref, pipeline_variables
        Values: Number of runs seen with that exact set of matching variable keys

    - gitlab_ci_pipeline_unrecognized_status_count: Observed statuses missing from the configured list
        Labels: metric, status

Exposition:
    Registry.metrics_handler returns a WSGI application serving the current
    state of every registered family: prometheus_client's own app (OpenMetrics
    when requested by the scraper, gzip, name[] filtering) when enabled, a plain
    legacy Prometheus text app when disabled.
"""
import logging

from prometheus_client import CollectorRegistry, Gauge, make_wsgi_app
from prometheus_client.exposition import CONTENT_TYPE_LATEST, generate_latest

from exceptions import RegistrationError
from labels import (JOB_LABELS, JOB_STATUS_LABELS, PIPELINE_LABELS,
                    PIPELINE_STATUS_LABELS, PIPELINE_VARIABLES_LABELS)

logger = logging.getLogger(__name__)

COVERAGE = 'gitlab_ci_pipeline_coverage'
LAST_RUN_DURATION = 'gitlab_ci_pipeline_last_run_duration_seconds'
LAST_RUN_JOB_DURATION = 'gitlab_ci_pipeline_last_job_run_duration_seconds'
LAST_RUN_JOB_STATUS = 'gitlab_ci_pipeline_last_job_run_status'
LAST_RUN_JOB_ARTIFACT_SIZE = 'gitlab_ci_pipeline_last_job_run_artifact_size'
TIME_SINCE_LAST_JOB_RUN = 'gitlab_ci_pipeline_time_since_last_job_run_seconds'
JOB_RUN_COUNT = 'gitlab_ci_pipeline_job_run_count'
LAST_RUN_ID = 'gitlab_ci_pipeline_last_run_id'
LAST_RUN_STATUS = 'gitlab_ci_pipeline_last_run_status'
RUN_COUNT = 'gitlab_ci_pipeline_run_count'
TIME_SINCE_LAST_RUN = 'gitlab_ci_pipeline_time_since_last_run_seconds'
PIPELINE_VARIABLES = 'gitlab_ci_pipeline_run_count_with_variable'
UNRECOGNIZED_STATUS = 'gitlab_ci_pipeline_unrecognized_status_count'


def variable_labelled_counter(metric_name, labels, documentation=''):
    """
    Build an unregistered gauge with a caller-chosen name and label names.

    Args:
        metric_name: Full metric name
        labels: Ordered label names
        documentation: Help text (optional)

    Returns:
        prometheus_client Gauge not attached to any registry
    """
    return Gauge(metric_name, documentation or metric_name, labels, registry=None)


def text_format_app(registry):
    """WSGI app always serving the legacy Prometheus text format."""
    def app(environ, start_response):
        output = generate_latest(registry)
        start_response('200 OK', [
            ('Content-Type', CONTENT_TYPE_LATEST),
            ('Content-Length', str(len(output))),
        ])
        # HEAD gets the headers only
        if environ.get('REQUEST_METHOD') == 'HEAD':
            return [b'']
        return [output]
    return app


class Registry:
    """
    Owns the CollectorRegistry and every gauge family of the exporter.
    """

    def __init__(self):
        self.registry = CollectorRegistry()

        self.coverage = Gauge(
            COVERAGE,
            'Coverage of the most recent pipeline',
            PIPELINE_LABELS,
            registry=None
        )

        self.last_run_duration = Gauge(
            LAST_RUN_DURATION,
            'Duration of last pipeline run',
            PIPELINE_LABELS,
            registry=None
        )

        self.last_run_job_duration = Gauge(
            LAST_RUN_JOB_DURATION,
            'Duration of last job run',
            JOB_LABELS,
            registry=None
        )

        self.last_run_job_status = Gauge(
            LAST_RUN_JOB_STATUS,
            'Status of the most recent job',
            JOB_STATUS_LABELS,
            registry=None
        )

        self.last_run_job_artifact_size = Gauge(
            LAST_RUN_JOB_ARTIFACT_SIZE,
            'Filesize of the most recent job artifacts',
            JOB_LABELS,
            registry=None
        )

        self.time_since_last_job_run = Gauge(
            TIME_SINCE_LAST_JOB_RUN,
            'Elapsed time since most recent GitLab CI job run.',
            JOB_LABELS,
            registry=None
        )

        self.job_run_count = Gauge(
            JOB_RUN_COUNT,
            'GitLab CI pipeline job run count',
            JOB_LABELS,
            registry=None
        )

        self.last_run_id = Gauge(
            LAST_RUN_ID,
            'ID of the most recent pipeline',
            PIPELINE_LABELS,
            registry=None
        )

        self.last_run_status = Gauge(
            LAST_RUN_STATUS,
            'Status of the most recent pipeline',
            PIPELINE_STATUS_LABELS,
            registry=None
        )

        self.run_count = Gauge(
            RUN_COUNT,
            'GitLab CI pipeline run count',
            PIPELINE_LABELS,
            registry=None
        )

        self.time_since_last_run = Gauge(
            TIME_SINCE_LAST_RUN,
            'Elapsed time since most recent GitLab CI pipeline run.',
            PIPELINE_LABELS,
            registry=None
        )

        self.pipeline_variables = Gauge(
            PIPELINE_VARIABLES,
            'Count of pipelines with variables',
            PIPELINE_VARIABLES_LABELS,
            registry=None
        )

        # Observed statuses that were not part of the configured status list
        self.unrecognized_status = Gauge(
            UNRECOGNIZED_STATUS,
            'Count of observed statuses missing from the configured status list',
            ['metric', 'status'],
            registry=None
        )

    def default_metrics(self):
        """(family name, gauge) pairs, in registration order."""
        return [
            (COVERAGE, self.coverage),
            (LAST_RUN_DURATION, self.last_run_duration),
            (LAST_RUN_JOB_DURATION, self.last_run_job_duration),
            (LAST_RUN_JOB_STATUS, self.last_run_job_status),
            (LAST_RUN_JOB_ARTIFACT_SIZE, self.last_run_job_artifact_size),
            (TIME_SINCE_LAST_JOB_RUN, self.time_since_last_job_run),
            (JOB_RUN_COUNT, self.job_run_count),
            (LAST_RUN_ID, self.last_run_id),
            (LAST_RUN_STATUS, self.last_run_status),
            (RUN_COUNT, self.run_count),
            (TIME_SINCE_LAST_RUN, self.time_since_last_run),
            (PIPELINE_VARIABLES, self.pipeline_variables),
            (UNRECOGNIZED_STATUS, self.unrecognized_status),
        ]

    def register_default_metrics(self):
        """
        Add every predefined family to the registry.

        Raises:
            RegistrationError: if a family name collides with one already registered
        """
        for name, metric in self.default_metrics():
            try:
                self.registry.register(metric)
            except ValueError as e:
                raise RegistrationError(name, e) from e
            logger.debug(f"Registered metric {name}")

    def metrics_handler(self, use_open_metrics=True):
        """
        Build a WSGI application serving the current state of the registry.

        Args:
            use_open_metrics: Negotiate the OpenMetrics text format from the
                Accept header when True, always serve the legacy Prometheus
                text format when False

        Returns:
            WSGI callable
        """
        if use_open_metrics:
            return make_wsgi_app(self.registry)
        return text_format_app(self.registry)
