"""
One-shot expiry sweep for an external scheduler (cron / k8s CronJob).

Expires every active subscription whose validity window has passed, logs the
count and exits non-zero if the store was unavailable so the scheduler
retries.
"""

import asyncio
import logging
import sys

from common.core.exceptions import StorageUnavailableError
from common.core.otel_axiom_exporter import get_logger
from common.db.session import engine
from packages.billing.services.subscription_service import SubscriptionService

logger = get_logger(__name__)


async def run_sweep() -> int:
    try:
        return await SubscriptionService().sweep()
    finally:
        await engine.dispose()


def main() -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,
    )

    try:
        expired = asyncio.run(run_sweep())
    except StorageUnavailableError as e:
        logger.error(f"Expiry sweep failed: {e}")
        return 1

    logger.info(f"Expiry sweep complete: {expired} subscriptions expired")
    return 0


if __name__ == "__main__":
    sys.exit(main())
