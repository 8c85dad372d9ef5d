#!/usr/bin/env python3
"""
Main orchestration module for the Scholarship Pipeline.

This module wires the pipeline together:
links → fetch → extract → catalog, plus the scheduled expiry sweep and batches

Two modes are supported (PIPELINE_MODE):
- once: run one expiry sweep and one batch (or a dry-run preview), then exit
- service: run the background scheduler until interrupted; the expiry sweep
  runs at start-up and daily, batches run on BATCH_SCHEDULE when set and
  are also triggered by the chat and webhook adapters
"""

import sys
import threading
from dataclasses import dataclass
from typing import Optional

from scholarship_pipeline.ai import AIExtractor
from scholarship_pipeline.batch import BatchOrchestrator
from scholarship_pipeline.catalog import CatalogStore
from scholarship_pipeline.extract import ExtractionEngine
from scholarship_pipeline.fetch import ContentFetcher, create_session
from scholarship_pipeline.ingress import (
    LinkIntake,
    MessageScanner,
    parse_batch_limit,
    run_batch_command,
)
from scholarship_pipeline.links import LinkStore
from scholarship_pipeline.report import format_cleanup_summary
from scholarship_pipeline.scheduler import PipelineScheduler
from scholarship_pipeline.storage import StorageError, create_db_engine
from scholarship_pipeline.sweeper import ExpirySweeper
from scholarship_pipeline.utils import PipelineConfig, get_logger, load_config, setup_logging


# Exit codes
EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_ENV_ERROR = 2


@dataclass
class Pipeline:
    """The wired components of one pipeline process."""
    config: PipelineConfig
    link_store: LinkStore
    catalog: CatalogStore
    fetcher: ContentFetcher
    engine: ExtractionEngine
    orchestrator: BatchOrchestrator
    sweeper: ExpirySweeper
    scheduler: PipelineScheduler
    intake: LinkIntake
    scanner: MessageScanner

    def close(self) -> None:
        self.scheduler.shutdown()
        self.fetcher.close()


def build_pipeline(config: PipelineConfig) -> Pipeline:
    """
    Create every component from configuration.

    Raises:
        StorageError: If the database cannot be opened.
    """
    logger = get_logger("main")

    db_engine = create_db_engine(config.database_url)
    link_store = LinkStore(db_engine)
    catalog = CatalogStore(db_engine)

    fetcher = ContentFetcher(
        session=create_session(config.fetch_max_retries),
        timeout=config.fetch_timeout,
        max_retries=config.fetch_max_retries,
        backoff_factor=config.fetch_backoff
    )

    ai = None
    if config.ai_api_key:
        ai = AIExtractor(
            api_key=config.ai_api_key,
            api_url=config.ai_api_url,
            model=config.ai_model,
            fallback_model=config.ai_fallback_model,
            timeout=config.ai_timeout
        )
    else:
        logger.warning("No AI API key configured, pages needing AI extraction will fail")

    engine = ExtractionEngine(ai=ai)
    orchestrator = BatchOrchestrator(
        link_store,
        fetcher,
        engine,
        catalog,
        link_delay=config.link_delay
    )
    sweeper = ExpirySweeper(catalog, hour=config.sweep_hour, minute=config.sweep_minute)
    scheduler = PipelineScheduler(sweeper, orchestrator)
    intake = LinkIntake(link_store)
    scanner = MessageScanner(intake, channel_id=config.link_channel_id)

    return Pipeline(
        config=config,
        link_store=link_store,
        catalog=catalog,
        fetcher=fetcher,
        engine=engine,
        orchestrator=orchestrator,
        sweeper=sweeper,
        scheduler=scheduler,
        intake=intake,
        scanner=scanner,
    )


def run_once(pipeline: Pipeline) -> int:
    """
    Run one expiry sweep followed by one batch.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = get_logger("main")
    config = pipeline.config

    logger.info("=" * 60)
    logger.info("Scholarship Pipeline - Starting")
    logger.info("=" * 60)

    logger.info("[Stage 1/2] Removing expired scholarships...")
    if config.dry_run:
        expired = pipeline.catalog.find_expired(pipeline.sweeper.clock().date())
        logger.info(f"[DRY RUN] {len(expired)} expired scholarship(s) would be removed")
    else:
        logger.info(format_cleanup_summary(pipeline.sweeper.run_once()))

    logger.info("[Stage 2/2] Processing unprocessed links...")
    pending = pipeline.link_store.get_unprocessed_count()
    logger.info(f"{pending} link(s) waiting")

    response = run_batch_command(pipeline.orchestrator, limit=config.batch_limit, dry_run=config.dry_run)
    for line in response.text.splitlines():
        logger.info(line)

    logger.info("=" * 60)
    logger.info("Scholarship Pipeline - Complete")
    logger.info(f"Summary: {pipeline.catalog.count()} scholarship(s) in catalog")
    logger.info("=" * 60)

    return EXIT_SUCCESS if response.ok else EXIT_FAILURE


def run_service(pipeline: Pipeline, stop_event: Optional[threading.Event] = None) -> int:
    """Run the background scheduler until stop_event is set."""
    logger = get_logger("main")
    config = pipeline.config
    stop_event = stop_event or threading.Event()

    pipeline.scheduler.start()
    if config.batch_schedule:
        try:
            batch_size = parse_batch_limit(config.batch_limit)
            pipeline.scheduler.start_batches(config.batch_schedule, batch_size)
        except ValueError as e:
            logger.warning(f"Scheduled batches disabled: {e}")
    logger.info("Scholarship Pipeline service running")

    try:
        while not stop_event.wait(1.0):
            pass
    finally:
        pipeline.scheduler.shutdown()
        logger.info("Scholarship Pipeline service stopped")

    return EXIT_SUCCESS


def main() -> int:
    """
    Main entry point for the Scholarship Pipeline.

    Sets up logging and runs the pipeline with proper error handling.

    Returns:
        Exit code for the process.
    """
    config = load_config()

    setup_logging(config.log_level)
    logger = get_logger("main")

    if config.dry_run:
        logger.info("Running in DRY RUN mode - nothing will be changed")

    try:
        pipeline = build_pipeline(config)
    except StorageError as e:
        logger.error(f"Could not open database: {e}")
        return EXIT_ENV_ERROR

    try:
        if config.mode == "service":
            return run_service(pipeline)
        return run_once(pipeline)

    except KeyboardInterrupt:
        logger.warning("Pipeline interrupted by user")
        return EXIT_FAILURE

    except StorageError as e:
        logger.error(f"Database error: {e}")
        return EXIT_FAILURE

    except Exception as e:
        logger.exception(f"Unexpected error in pipeline: {e}")
        return EXIT_FAILURE

    finally:
        pipeline.close()


if __name__ == "__main__":
    sys.exit(main())
