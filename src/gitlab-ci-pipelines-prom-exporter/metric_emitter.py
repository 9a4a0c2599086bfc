"""
Metric Emission Module

Turns GitLab API observations into gauge values.

Functions:
    - status_metric_actions: Pure one-hot planner for a status family
    - emit_status_metric: Apply the one-hot plan to a gauge
    - emit_pipeline_variables_metric: Count pipeline runs per matching variable key set

Status Emission Strategy:
    - Every status of the configured list is derived again on each call,
      so repeated calls converge to the same state whatever came before
    - The observed status is set to 1
    - Sparse mode: every other status series is deleted from the family
    - Dense mode: every other status series is set to 0
    - An observed status that is not in the list matches nothing; all series
      are turned off and the optional unrecognized-status gauge is incremented

Pipeline Variables Strategy:
    - Only variable keys matching the filter regex are kept, in API order
    - Matching keys are joined with ',' into a single label value, bounding
      cardinality to the distinct key sets actually seen
    - The series is incremented (not set) once per pipeline run
    - No matching keys means no series at all
"""
import logging
from contextlib import suppress

from exceptions import FetchError
from labels import augment_label_values

logger = logging.getLogger(__name__)

STATUS_ON = 'on'
STATUS_OFF = 'off'
STATUS_DELETE = 'delete'


def status_metric_actions(label_values, statuses, status, sparse_metrics):
    """
    Plan the one-hot encoding of a status over the full status list.

    Args:
        label_values: Label values preceding the trailing status label
        statuses: Ordered, non-empty list of every possible status
        status: The observed status
        sparse_metrics: Delete inactive series instead of zeroing them

    Returns:
        List of (label tuple, action) pairs, in the order of statuses
    """
    actions = []
    for s in statuses:
        args = tuple(label_values) + (s,)
        if s == status:
            actions.append((args, STATUS_ON))
        elif sparse_metrics:
            actions.append((args, STATUS_DELETE))
        else:
            actions.append((args, STATUS_OFF))
    return actions


def emit_status_metric(metric, label_values, statuses, status, sparse_metrics,
                       unrecognized_status=None, metric_name=''):
    """
    Encode a single observed status as a one-hot vector on a status gauge.

    Args:
        metric: Gauge whose last label is 'status'
        label_values: Label values preceding the status label
        statuses: Ordered, non-empty list of every possible status
        status: The observed status
        sparse_metrics: Delete inactive series instead of zeroing them
        unrecognized_status: Optional gauge (labels: metric, status) counting
            observed statuses missing from statuses
        metric_name: Family name used as the 'metric' label of unrecognized_status
    """
    for args, action in status_metric_actions(label_values, statuses, status, sparse_metrics):
        if action == STATUS_ON:
            metric.labels(*args).set(1)
        elif action == STATUS_OFF:
            metric.labels(*args).set(0)
        else:
            # Deleting a series that was never created is a no-op
            with suppress(KeyError):
                metric.remove(*args)

    if status not in statuses:
        logger.debug(f"{metric_name or 'status metric'}: status '{status}' is not in the configured status list")
        if unrecognized_status is not None:
            unrecognized_status.labels(metric_name, str(status)).inc()


def emit_pipeline_variables_metric(rate_limit, gauge, details, pipeline_id, fetch, filter_regexp):
    """
    Count a pipeline run against the set of its variable keys matching a filter.

    Args:
        rate_limit: Call gate invoked right before the API fetch
        gauge: Gauge labelled project, topics, ref, pipeline_variables
        details: ProjectRefDetails of the pipeline
        pipeline_id: GitLab pipeline ID
        fetch: Callable (project_id, pipeline_id) -> list of variable dicts
        filter_regexp: Compiled regex searched in each variable key

    Raises:
        FetchError: if the variables could not be fetched or are malformed;
            nothing is emitted
    """
    rate_limit()
    try:
        variables = fetch(details.project_id, pipeline_id)
    except Exception as e:
        raise FetchError(f"could not fetch pipeline variables for pipeline {pipeline_id}", e) from e

    # Matching keys in API order, not sorted
    try:
        var_keys = [v['key'] for v in variables or [] if filter_regexp.search(v['key'])]
    except (KeyError, TypeError) as e:
        raise FetchError(f"malformed pipeline variables for pipeline {pipeline_id}", e) from e
    if not var_keys:
        logger.debug(f"{details.path}@{details.ref}: pipeline {pipeline_id} has no matching variables")
        return

    logger.debug(f"creating metric for pipelines with variables: {var_keys}")
    gauge.labels(*augment_label_values(details, ','.join(var_keys))).inc()
