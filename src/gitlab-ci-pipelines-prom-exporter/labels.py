"""
Label Schema Module

Every metric family is addressed by an ordered tuple of label values. The
prefix (project, topics, ref) is shared by all families; job families add
(stage, job_name) and the status/variables families append one trailing label.

Functions:
    - default_label_values: (project, topics, ref) for a project ref
    - augment_label_values: the shared prefix followed by extra values
"""
from dataclasses import dataclass
from typing import Tuple, Union

PIPELINE_LABELS = ['project', 'topics', 'ref']
JOB_LABELS = PIPELINE_LABELS + ['stage', 'job_name']
PIPELINE_STATUS_LABELS = PIPELINE_LABELS + ['status']
JOB_STATUS_LABELS = JOB_LABELS + ['status']
PIPELINE_VARIABLES_LABELS = PIPELINE_LABELS + ['pipeline_variables']


@dataclass(frozen=True)
class ProjectRefDetails:
    """A GitLab project ref being polled."""

    project_id: Union[int, str]
    path: str
    topics: str
    ref: str


def default_label_values(details: ProjectRefDetails) -> Tuple[str, ...]:
    return (details.path, details.topics, details.ref)


def augment_label_values(details: ProjectRefDetails, *values: str) -> Tuple[str, ...]:
    """
    Build the full label tuple for a family.

    Args:
        details: Project ref the series belongs to
        values: Family-specific trailing values, in declared label order

    Returns:
        Tuple ordered like the family's label names
    """
    return default_label_values(details) + tuple(values)
