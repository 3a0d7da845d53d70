"""Main entry point for the Azure DevOps exporter."""
from datetime import datetime, timezone
import argparse
import json
import logging
import signal
import sys

from devops_exporter.config import load_config
from devops_exporter.control_api import ControlAPI
from devops_exporter.engine import ExporterEngine
from devops_exporter.errors import ConfigError, FetchError

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


class JSONFormatter(logging.Formatter):
    """Format log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data)


def setup_logging(log_level: str, log_format: str):
    """Setup logging configuration."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    logging.basicConfig(level=level, handlers=[handler], force=True)

    # Reduce noise from some libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Azure DevOps exporter - Prometheus metrics for Azure DevOps"
    )
    parser.add_argument("--config", "-c", help="Path to configuration YAML file")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose mode (DEBUG logging)")
    parser.add_argument("--bind", help="Metrics server address (e.g. :8080)")
    parser.add_argument("--control-api-port", type=int, help="Control API port (0 disables)")
    parser.add_argument("--azure-devops-organisation", help="Azure DevOps organisation")
    parser.add_argument("--azure-devops-access-token", help="Azure DevOps personal access token")
    parser.add_argument(
        "--azure-devops-filter-agentpool",
        type=int,
        nargs="+",
        help="Agent pool ids to collect (default: all pools)"
    )
    parser.add_argument("--scrape-time", help="Default scrape interval (e.g. 15m)")
    for task in ("general", "project", "pullrequest", "build", "latest-build", "release", "agentpool"):
        parser.add_argument(f"--scrape-time-{task}", help=f"Scrape interval of the {task} collector")
    parser.add_argument("--disable-collector", action="append", help="Collector to disable (repeatable)")
    parser.add_argument("--cache-ttl", help="Cache collected metrics for this long (0 disables)")
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict:
    """Map parsed flags to config paths."""
    overrides = {
        ("server", "bind"): args.bind,
        ("server", "control_api_port"): args.control_api_port,
        ("azure_devops", "organisation"): args.azure_devops_organisation,
        ("azure_devops", "access_token"): args.azure_devops_access_token,
        ("azure_devops", "agent_pool_ids"): args.azure_devops_filter_agentpool,
        ("scrape", "default"): args.scrape_time,
        ("scrape", "general"): args.scrape_time_general,
        ("scrape", "project"): args.scrape_time_project,
        ("scrape", "pullrequest"): args.scrape_time_pullrequest,
        ("scrape", "build"): args.scrape_time_build,
        ("scrape", "latest_build"): args.scrape_time_latest_build,
        ("scrape", "release"): args.scrape_time_release,
        ("scrape", "agentpool"): args.scrape_time_agentpool,
        ("scrape", "disabled"): args.disable_collector,
        ("cache", "ttl"): args.cache_ttl,
    }
    if args.verbose:
        overrides[("global", "log_level")] = "DEBUG"
    return overrides


def main():
    """Main function."""
    args = build_parser().parse_args()

    # Load configuration
    try:
        config = load_config(args.config, overrides=overrides_from_args(args))
    except ConfigError as e:
        print(f"Error loading configuration: {e}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config.global_.log_level, config.global_.log_format)
    logger = logging.getLogger(__name__)

    logger.info("Azure DevOps exporter")
    logger.info(f"Organisation: {config.azure_devops.organisation}")
    logger.info(f"Default scrape time: {config.scrape.default}s")
    if config.azure_devops.agent_pool_ids:
        logger.info(f"Agent pool filter: {config.azure_devops.agent_pool_ids}")

    engine = ExporterEngine(config)
    try:
        engine.start()
    except FetchError as e:
        logger.error(f"Failed to list projects: {e}")
        sys.exit(1)
    except OSError as e:
        logger.error(f"Failed to start metrics server on {config.server.bind}: {e}")
        sys.exit(1)

    # Setup signal handlers
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        engine.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    if config.server.control_api_port:
        control_api = ControlAPI(engine)
        logger.info(f"Starting control API on port {config.server.control_api_port}")
        try:
            control_api.run(host="0.0.0.0", port=config.server.control_api_port)
        except Exception as e:
            logger.error(f"Control API error: {e}", exc_info=True)
            engine.stop()
            sys.exit(1)
        engine.stop()
    else:
        engine.scheduler.stop_event.wait()


if __name__ == "__main__":
    main()
