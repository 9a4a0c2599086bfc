"""
Pipeline Monitoring Orchestration Module

This module orchestrates the monitoring of all configured GitLab project refs
by fetching their most recent pipeline (and its jobs) and updating Prometheus
metrics with the results.

Process Flow:
    1. For each project, fetch its topics once and reuse them for every poll
    2. For each ref, fetch the most recent pipeline
    3. When the pipeline ID changed since the last poll, count a new run and
       (optionally) count its matching variable keys
    4. Update the pipeline gauges: last run ID, coverage, duration, time since
       last run, one-hot status
    5. Optionally fetch the pipeline jobs and update the job gauges the same way
    6. A failed fetch or malformed payload is logged and only skips that ref;
       other refs are still polled

Failure Scope:
    - Pipeline variables failure: only the variables metric of that run is skipped
    - Malformed job: only that job is skipped
    - Anything else failing for a ref: the ref is skipped until the next poll

Run Count Strategy:
    - Run counts are incremented when a new pipeline/job ID is observed for a ref
    - The first observation of a ref counts as one run
    - Counts only cover what this process has seen; they reset on restart

Every GitLab API call goes through the rate limit call gate first.
"""
import logging
import re
from datetime import datetime, timezone

from exceptions import FetchError
from gauges import LAST_RUN_JOB_STATUS, LAST_RUN_STATUS
from labels import ProjectRefDetails, augment_label_values, default_label_values
from metric_emitter import emit_pipeline_variables_metric, emit_status_metric

logger = logging.getLogger(__name__)


def parse_timestamp(timestamp_str):
    """
    Parse a GitLab ISO 8601 timestamp.

    Args:
        timestamp_str: e.g. '2025-11-04T13:25:38.181Z' or '2025-11-04T13:25:38.181+01:00'

    Returns:
        Timezone-aware datetime, or None when missing or unparseable
    """
    if not timestamp_str:
        return None
    normalized = re.sub(r'Z$', '+00:00', timestamp_str)
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        logger.warning(f"Unparseable timestamp '{timestamp_str}'")
        return None


def seconds_since(timestamp_str, now):
    ts = parse_timestamp(timestamp_str)
    if ts is None:
        return None
    return max((now - ts).total_seconds(), 0.0)


def artifacts_size(job):
    return sum(a.get('size') or 0 for a in job.get('artifacts') or [])


def pipeline_values(pipeline):
    """
    Read the values exported for a pipeline.

    Raises:
        KeyError, TypeError, ValueError, AttributeError: on a malformed payload
    """
    coverage = pipeline.get('coverage')
    duration = pipeline.get('duration')
    return {
        'id': int(pipeline['id']),
        'status': pipeline.get('status'),
        # Coverage is reported as a string ("87.5") or null
        'coverage': float(coverage) if coverage is not None else None,
        'duration': float(duration) if duration is not None else None,
        'updated_at': pipeline.get('updated_at'),
    }


def job_values(job):
    """
    Read the values exported for a job.

    Raises:
        KeyError, TypeError, ValueError, AttributeError: on a malformed payload
    """
    duration = job.get('duration')
    return {
        'id': int(job['id']),
        'stage': job.get('stage') or '',
        'name': job.get('name') or '',
        'status': job.get('status'),
        'duration': float(duration) if duration is not None else None,
        'artifacts_size': artifacts_size(job),
        # Jobs that never started only have created_at
        'started_at': job.get('started_at') or job.get('created_at'),
    }


class PipelineMonitor:
    def __init__(self, registry, client, settings, projects, rate_limit, clock=None):
        self.registry = registry
        self.client = client
        self.settings = settings
        self.projects = projects
        self.rate_limit = rate_limit
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._topics = {}
        self._last_pipeline_ids = {}
        self._last_job_ids = {}

    def _fetch(self, description, fn, *args):
        self.rate_limit()
        try:
            return fn(*args)
        except Exception as e:
            raise FetchError(f"could not fetch {description}", e) from e

    def project_topics(self, project_name):
        if project_name not in self._topics:
            project = self._fetch(f"project {project_name}", self.client.get_project, project_name)
            try:
                # tag_list is the pre-14.0 name of topics
                topics = project.get('topics') or project.get('tag_list') or []
                self._topics[project_name] = ','.join(topics)
            except (AttributeError, TypeError) as e:
                raise FetchError(f"malformed project {project_name}", e) from e
        return self._topics[project_name]

    def monitor_projects(self):
        """
        Poll every configured project ref and update Prometheus metrics.

        Returns:
            Number of refs whose poll failed
        """
        logger.info("Starting GitLab CI pipelines monitoring...")
        failures = 0
        for project in self.projects:
            for ref in project['refs']:
                try:
                    self.monitor_ref(project['name'], ref)
                except FetchError as e:
                    failures += 1
                    logger.warning(f"{project['name']}@{ref}: {e}")
        logger.info(f"GitLab CI pipelines monitoring completed ({failures} failed ref(s))")
        return failures

    def monitor_ref(self, project_name, ref):
        topics = self.project_topics(project_name)
        details = ProjectRefDetails(project_id=project_name, path=project_name, topics=topics, ref=ref)

        pipeline = self._fetch(
            f"latest pipeline of {project_name}@{ref}",
            self.client.get_latest_pipeline, project_name, ref
        )
        if pipeline is None:
            logger.debug(f"{project_name}@{ref}: No pipeline found - skipping")
            return

        try:
            values = pipeline_values(pipeline)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise FetchError(f"malformed latest pipeline of {project_name}@{ref}", e) from e
        self.emit_pipeline(details, values)

        if not self.settings.fetch_pipeline_jobs:
            return

        jobs = self._fetch(
            f"jobs of pipeline {values['id']}",
            self.client.get_pipeline_jobs, project_name, values['id']
        )
        for job in jobs:
            try:
                self.emit_job(details, job_values(job))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                # One bad job does not hide the others
                logger.warning(f"{project_name}@{ref}: skipping malformed job of pipeline {values['id']}: {e!r}")

    def emit_pipeline(self, details, values):
        registry = self.registry
        labels = default_label_values(details)
        pipeline_id = values['id']

        if self._last_pipeline_ids.get(labels) != pipeline_id:
            registry.run_count.labels(*labels).inc()
            self._last_pipeline_ids[labels] = pipeline_id
            logger.info(f"{details.path}@{details.ref}: New pipeline {pipeline_id} ({values['status']})")

            if self.settings.fetch_pipeline_variables:
                try:
                    emit_pipeline_variables_metric(
                        self.rate_limit,
                        registry.pipeline_variables,
                        details,
                        pipeline_id,
                        self.client.get_pipeline_variables,
                        self.settings.pipeline_variables_filter
                    )
                except FetchError as e:
                    # Only the variables metric is skipped for this run
                    logger.warning(f"{details.path}@{details.ref}: {e}")

        registry.last_run_id.labels(*labels).set(pipeline_id)

        if values['coverage'] is not None:
            registry.coverage.labels(*labels).set(values['coverage'])

        if values['duration'] is not None:
            registry.last_run_duration.labels(*labels).set(values['duration'])

        elapsed = seconds_since(values['updated_at'], self.clock())
        if elapsed is not None:
            registry.time_since_last_run.labels(*labels).set(elapsed)

        emit_status_metric(
            registry.last_run_status,
            labels,
            self.settings.statuses,
            values['status'],
            self.settings.sparse_metrics,
            registry.unrecognized_status,
            LAST_RUN_STATUS
        )

    def emit_job(self, details, values):
        registry = self.registry
        labels = augment_label_values(details, values['stage'], values['name'])
        logger.debug(f"{details.path}@{details.ref}: Job {values['name']} ({values['status']})")

        # A retried job keeps its name but gets a new ID
        if self._last_job_ids.get(labels) != values['id']:
            registry.job_run_count.labels(*labels).inc()
            self._last_job_ids[labels] = values['id']

        if values['duration'] is not None:
            registry.last_run_job_duration.labels(*labels).set(values['duration'])

        registry.last_run_job_artifact_size.labels(*labels).set(values['artifacts_size'])

        elapsed = seconds_since(values['started_at'], self.clock())
        if elapsed is not None:
            registry.time_since_last_job_run.labels(*labels).set(elapsed)

        emit_status_metric(
            registry.last_run_job_status,
            labels,
            self.settings.statuses,
            values['status'],
            self.settings.sparse_metrics,
            registry.unrecognized_status,
            LAST_RUN_JOB_STATUS
        )
