from __future__ import annotations

import logging
import sys

from dining_pipeline.core.exceptions import ConfigError, PipelineError
from dining_pipeline.devkit.config import load_settings
from dining_pipeline.devkit.observability import configure_logging, configure_otel
from dining_pipeline.jobs.ingest import run_pipeline

logger = logging.getLogger("dining_pipeline.jobs")

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2


def main() -> int:
    configure_logging()
    try:
        settings = load_settings()
    except ConfigError as exc:
        logger.error("pipeline_config_invalid", extra={"error": str(exc)})
        return EXIT_CONFIG_ERROR
    configure_logging(settings.PIPELINE_LOG_LEVEL)
    configure_otel("dining-pipeline")

    try:
        report = run_pipeline(settings)
    except ConfigError as exc:
        logger.error("pipeline_config_invalid", extra={"error": str(exc)})
        return EXIT_CONFIG_ERROR
    except PipelineError as exc:
        logger.error("pipeline_run_failed", extra={"error": str(exc), "error_type": type(exc).__name__})
        return EXIT_RUN_FAILED

    logger.info(
        "pipeline_run_finished",
        extra={
            "state": report.state.value,
            "inserted": report.summary.inserted,
            "updated": report.summary.updated,
            "deactivated": report.summary.deactivated,
            "rejected": report.summary.rejected,
            "failed_pages": len(report.fetch_failures),
        },
    )
    return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
