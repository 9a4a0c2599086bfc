"""
Exporter Error Types

    - RegistrationError: a metric family could not be added to the registry.
        Raised once at startup; the exporter must not start serving metrics.
    - FetchError: a GitLab API call failed (network, auth, rate limit, bad payload).
        Recoverable: the emission for that pipeline/job is skipped and polling
        continues for every other project ref.
"""


class RegistrationError(Exception):
    """A metric family collided with one already present in the registry."""

    def __init__(self, metric_name, cause):
        self.metric_name = metric_name
        self.cause = cause
        super().__init__(
            f"could not add provided metric '{metric_name}' to the Prometheus registry: {cause}"
        )


class FetchError(Exception):
    """A GitLab API fetch failed; the registry was left untouched for it."""

    def __init__(self, message, cause=None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
