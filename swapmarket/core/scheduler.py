import asyncio
import logging

from .config import get_settings
from .dependencies import get_offer_service

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("scheduler")

async def reconcile_accepted_offers():
    """
    Finish accepted trade offers whose items were not both marked as traded.

    Runs periodically; every item write it retries is idempotent.
    """
    try:
        logger.info("Starting accepted offer reconciliation")
        settled = await get_offer_service().reconcile_unsettled()
        logger.info(f"Completed accepted offer reconciliation, {settled} offers settled")
    except Exception as e:
        logger.error(f"Error in reconcile_accepted_offers: {str(e)}")

async def run_scheduled_tasks():
    """
    Run all scheduled tasks periodically.
    """
    interval = get_settings().reconcile_interval_seconds
    while True:
        try:
            await reconcile_accepted_offers()
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in scheduled tasks: {str(e)}")
