"""
GitLab CI Pipelines Prometheus Exporter - Main Entry Point

This exporter monitors the pipelines and jobs of GitLab projects. It periodically
queries the GitLab API for the most recent pipeline of each configured ref and
re-exposes it as labelled Prometheus gauges.

Key Features:
    - Pipeline and job status, duration, coverage, artifact size and run counts
    - Sparse or dense status metrics (delete vs zero inactive statuses)
    - Optional count of pipeline runs per set of pipeline variable keys
    - Rate limited GitLab API calls
    - OpenMetrics or legacy Prometheus text exposition

Monitoring Schedule:
    - Polls run on a configurable interval (default: 30 seconds)
    - Initial poll executes on service startup
    - Uses APScheduler for reliable scheduling

The exporter exposes metrics on port 8080 (configurable via METRICS_PORT) at
/metrics (configurable via METRICS_PATH). See config.py for every environment
variable.

Functions:
    - make_app: WSGI app routing METRICS_PATH to the metrics handler
    - start_metrics_server: Serve the WSGI app on a daemon thread
    - schedule_tasks: Configures APScheduler jobs
    - main: Entry point that starts metrics server and scheduler
"""
import logging
import sys
import threading
from wsgiref.simple_server import WSGIRequestHandler, make_server

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger
from prometheus_client.exposition import ThreadingWSGIServer

from config import load_projects, load_settings
from exceptions import RegistrationError
from gauges import Registry
from gitlab_client import GitLabClient
from pipeline_monitor import PipelineMonitor
from rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class _SilentHandler(WSGIRequestHandler):
    def log_message(self, format, *args):
        logger.debug(f"{self.address_string()} - {format % args}")


def make_app(metrics_handler, metrics_path='/metrics'):
    def app(environ, start_response):
        if environ.get('PATH_INFO') == metrics_path:
            return metrics_handler(environ, start_response)
        start_response('404 Not Found', [('Content-Type', 'text/plain; charset=utf-8')])
        return [b'Not Found\n']
    return app


def start_metrics_server(app, port, addr='0.0.0.0'):
    # One thread per request so a stalled scraper cannot block the others
    httpd = make_server(addr, port, app, ThreadingWSGIServer, handler_class=_SilentHandler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    return httpd


def schedule_tasks(scheduler, monitor, interval_seconds=30):
    """
    Schedule monitoring tasks using APScheduler.

    Args:
        scheduler: APScheduler BlockingScheduler instance
        monitor: PipelineMonitor instance
        interval_seconds: Interval in seconds between polls (default: 30)
    """
    scheduler.add_job(
        monitor.monitor_projects,
        IntervalTrigger(seconds=interval_seconds),
        id='monitor_projects',
        replace_existing=True,
        max_instances=1,
        coalesce=True
    )

    logger.info("Scheduled tasks:")
    logger.info(f"  - GitLab CI pipelines monitoring: Every {interval_seconds} seconds")


def main():
    """
    Main entry point for the exporter.
    """
    settings = load_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger.info("Starting GitLab CI Pipelines Prometheus Exporter...")
    logger.info(f"Logging level: {'DEBUG' if settings.debug else 'INFO'}")

    projects = load_projects(settings.projects_json_path)

    registry = Registry()
    try:
        registry.register_default_metrics()
    except RegistrationError as e:
        logger.error(f"Failed to register metrics: {e}")
        sys.exit(1)

    app = make_app(
        registry.metrics_handler(use_open_metrics=not settings.disable_openmetrics_encoding),
        settings.metrics_path
    )
    start_metrics_server(app, settings.metrics_port)
    logger.info(f"Prometheus metrics server started on port {settings.metrics_port} ({settings.metrics_path})")

    monitor = PipelineMonitor(
        registry,
        GitLabClient(settings.gitlab_url, settings.gitlab_token),
        settings,
        projects,
        RateLimiter(settings.max_requests_per_second)
    )
    logger.info(f"Poll interval: {settings.poll_interval_seconds} seconds, "
                f"sparse metrics: {settings.sparse_metrics}")

    scheduler = BlockingScheduler()
    schedule_tasks(scheduler, monitor, settings.poll_interval_seconds)

    logger.info("Executing initial monitoring run...")
    monitor.monitor_projects()

    logger.info("Starting scheduler...")
    try:
        scheduler.start()
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        scheduler.shutdown()
        logger.info("Scheduler stopped")


if __name__ == "__main__":
    main()
