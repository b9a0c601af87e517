"""Entry point for the pipeline workers."""

import argparse
import logging
import signal
import sys
from typing import Any, NoReturn

import redis

from castflow.core.config import settings
from castflow.core.logging import configure_logging
from castflow.queue.orchestrator import Orchestrator, setup_queues
from castflow.queue.stages import STAGES
from castflow.services import create_queues


def check_configuration() -> bool:
    """Log the effective configuration and report missing provider keys."""
    logger = logging.getLogger(__name__)
    logger.info("Pipeline configuration:")
    logger.info("  Redis: %s", settings.REDIS_URL)
    logger.info("  Models: %s", ", ".join(settings.default_models))
    logger.info("  Embedding model: %s", settings.EMBEDDING_MODEL)
    logger.info("  Cache enabled: %s", settings.CACHE_ENABLED)
    logger.info("  Job retries: %s %s", settings.JOB_MAX_RETRIES, settings.JOB_RETRY_INTERVALS)

    missing = [
        name
        for name in ("OPENROUTER_API_KEY", "OPENAI_API_KEY", "GOOGLE_AI_STUDIO_KEY")
        if not getattr(settings, name)
    ]
    for name in missing:
        logger.error("  %s is not set", name)
    return not missing


def parse_concurrency(values: list[str]) -> dict[str, int]:
    """Parse ``QueueName=N`` overrides.

    Raises:
        argparse.ArgumentTypeError: If an override is malformed or names an
            unknown queue
    """
    overrides: dict[str, int] = {}
    for value in values:
        name, _, count = value.partition("=")
        if name not in STAGES or not count.isdigit():
            raise argparse.ArgumentTypeError(f"Invalid concurrency override: {value}")
        overrides[name] = int(count)
    return overrides


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the cast enrichment pipeline workers",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "stages",
        nargs="*",
        choices=["all", *sorted(STAGES)],
        default="all",
        help="Stage queues to consume",
    )
    parser.add_argument(
        "--concurrency",
        nargs="+",
        default=[],
        metavar="QUEUE=N",
        help="Override the number of worker processes for a stage",
    )
    parser.add_argument(
        "--max-processes",
        type=int,
        default=settings.WORKER_MAX_PROCESSES,
        metavar="N",
        help=(
            "Cap on worker processes per stage when no override is given; "
            "each process runs one job at a time"
        ),
    )
    parser.add_argument(
        "--burst",
        action="store_true",
        help="Process queued jobs then exit",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Check configuration and exit",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(args)


def main(args: list[str] | None = None) -> NoReturn:
    options = parse_args(args)
    configure_logging(
        level="debug" if options.verbose else settings.LOG_LEVEL,
        json_logs=settings.JSON_LOGS,
    )
    logger = logging.getLogger(__name__)

    try:
        queues = create_queues(settings)
    except redis.RedisError as e:
        logger.error("Redis unavailable: %s", e)
        sys.exit(1)

    if options.check_config:
        ok = check_configuration()
        sys.exit(0 if ok else 1)

    setup_queues(queues)
    queues.connection.close()

    orchestrator = Orchestrator(
        stage_names=None if "all" in options.stages else options.stages,
        concurrency=parse_concurrency(options.concurrency),
        burst=options.burst,
        max_processes=options.max_processes,
    )

    def shutdown_handler(signum: int, frame: Any) -> None:
        logger.info("Received signal %s, stopping workers", signum)
        orchestrator.stop()
        sys.exit(0)

    orchestrator.start()
    signal.signal(signal.SIGTERM, shutdown_handler)
    signal.signal(signal.SIGINT, shutdown_handler)
    orchestrator.join()
    sys.exit(0)


if __name__ == "__main__":
    main()
