"""Main entry point: one materialization sweep over all active trackers"""
import logging
import asyncio
from alpine.config import validate_config, LOG_LEVEL, SWEEP_USER_ID
from alpine.services.container import init_container, reset_container
from alpine.storage.postgres import PostgresTrackerStore
from alpine.storage.provider import StoreProvider

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO)
)

logger = logging.getLogger(__name__)


async def main() -> int:
    """Main application entry point"""
    provider = StoreProvider(lambda user_id: PostgresTrackerStore())
    try:
        # Validate configuration
        logger.info("Validating configuration...")
        validate_config()

        # Initialize database
        logger.info(f"Opening tracker store for {SWEEP_USER_ID}...")
        store = await provider.open(SWEEP_USER_ID)
        await store.ensure_schema()

        container = init_container(store)

        logger.info("Materializing tracker occurrences...")
        result = await container.tracker_service.ensure_occurrences_materialized()
        logger.info(
            f"Sweep complete: {result.created} created, {result.skipped} skipped, "
            f"{result.archived} archived, {len(result.errors)} errors"
        )
        return 1 if result.errors else 0

    except KeyboardInterrupt:
        logger.info("Shutting down...")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        reset_container()

        logger.info("Closing tracker stores...")
        await provider.close_all()

        logger.info("Shutdown complete")


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
