#!/usr/bin/env python3
"""
Background Tender Worker
Runs as a separate process: pulls new tenders from the discovery feed and
analyzes every unprocessed tender, one at a time
"""

import os
import signal
import sys
import time
import traceback
from datetime import datetime
from dotenv import load_dotenv

# Add the parent directory to the path
sys.path.append(os.path.dirname(os.path.abspath(__file__)))

# Load environment variables
load_dotenv()

from config.settings import (
    ENABLE_TENDER_DISCOVERY,
    WORKER_BATCH_SIZE,
    WORKER_POLL_INTERVAL_SECONDS,
)
from config.pipeline_config import get_pipeline_config_summary
from services.pipeline_factory import get_pipeline
from utils.helpers import CancellationToken
from utils.logging_config import get_logger

# Setup logger
logger = get_logger(__name__, "worker")

# Shared by every run; set on SIGTERM/SIGINT so in-flight work stops dispatching
shutdown_token = CancellationToken()


def _handle_signal(signum, frame):
    logger.info(f"Received signal {signum}, finishing in-flight work")
    shutdown_token.cancel(f"signal {signum}")


def discover_tenders(pipeline) -> int:
    """Pull the latest export from the discovery feed"""
    if not ENABLE_TENDER_DISCOVERY or pipeline.tenderland is None:
        return 0
    try:
        return pipeline.tenderland.fetch_new_tenders()
    except Exception as e:
        logger.error(f"Tender discovery failed: {e}")
        traceback.print_exc()
        return 0


def process_pending(pipeline, limit: int = WORKER_BATCH_SIZE) -> int:
    """Analyze up to `limit` unprocessed tenders. Returns how many succeeded."""
    pending = pipeline.store.find_unprocessed(limit)
    if not pending:
        logger.debug("No unprocessed tenders")
        return 0

    logger.info(f"Found {len(pending)} unprocessed tender(s)")
    succeeded = 0
    for record in pending:
        if shutdown_token.cancelled:
            break
        outcome = pipeline.analyze_tender(record.reg_number, token=shutdown_token)
        if outcome.success:
            succeeded += 1
        else:
            logger.warning(f"Tender {record.reg_number}: {outcome.message} (stage {outcome.stage.value})")
    return succeeded


def worker_loop():
    """Main worker loop"""
    logger.info(f"Worker started - polling every {WORKER_POLL_INTERVAL_SECONDS} seconds")
    logger.info(f"Pipeline configuration: {get_pipeline_config_summary()}")

    pipeline = get_pipeline()
    consecutive_errors = 0
    max_consecutive_errors = 10

    while not shutdown_token.cancelled:
        try:
            created = discover_tenders(pipeline)
            if created:
                logger.info(f"Discovered {created} new tender(s)")

            process_pending(pipeline)
            consecutive_errors = 0

            # Sleep before next check; wakes early on shutdown
            shutdown_token.wait(WORKER_POLL_INTERVAL_SECONDS)

        except KeyboardInterrupt:
            logger.info("Worker stopped by user (KeyboardInterrupt)")
            break
        except Exception as e:
            logger.error(f"Worker loop error: {e}")
            traceback.print_exc()
            consecutive_errors += 1

            if consecutive_errors >= max_consecutive_errors:
                logger.critical(f"Too many consecutive errors ({consecutive_errors}). Stopping worker.")
                break

            time.sleep(10)  # Sleep longer on error


if __name__ == "__main__":
    logger.info("=" * 80)
    logger.info("Tender Analysis Worker Starting")
    logger.info(f"Started at: {datetime.now().isoformat()}")
    logger.info("=" * 80)

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        worker_loop()
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        traceback.print_exc()
        sys.exit(1)
    finally:
        logger.info("Worker shutting down")
