"""
Idempotent bulk population of the reference store.

Run once at install time (`grimoire-init`) or on demand. Categories that
already carry a current load status are skipped, so rerunning after a failure
only fetches what is still missing.
"""

import argparse
import asyncio
import logging
import sys
from typing import Iterable

from ..config import Settings
from ..exceptions import GrimoireError
from .client import Open5eClient
from .models import FORMAT_VERSION, Category
from .store import ReferenceStore

logger = logging.getLogger("grimoire.loader")


class BulkLoader:
    """
    Fills the reference store from the Open5e API.

    The set of missing categories is computed before anything is fetched;
    those are then loaded strictly one after the other. The first failure
    aborts the rest of the run and propagates.
    """

    def __init__(
        self,
        client: Open5eClient,
        store: ReferenceStore,
        categories: Iterable[Category] = tuple(Category),
    ):
        self.client = client
        self.store = store
        self.categories = tuple(categories)

    def missing_categories(self) -> list[Category]:
        """Categories with no load status, or one written by another format version."""
        missing = []
        for category in self.categories:
            status = self.store.get_load_status(category)
            if status is None:
                missing.append(category)
            elif status.version != FORMAT_VERSION:
                logger.info(
                    f"{category.value} was loaded with format {status.version}, reloading"
                )
                missing.append(category)
        return missing

    async def load(self, force: bool = False) -> dict[Category, int]:
        """
        Load every missing category.

        Args:
            force: Wipe the store first and reload everything

        Returns:
            Number of records stored per category loaded in this run

        Raises:
            UpstreamError: If a fetch fails
            StoreWriteError: If a batch could not be written
        """
        if force:
            self.store.clear_all()

        missing = self.missing_categories()
        if not missing:
            logger.info("Open5e reference data already loaded")
            return {}

        logger.info(f"Loading Open5e data: {', '.join(c.value for c in missing)}")
        loaded: dict[Category, int] = {}
        for category in missing:
            records = await self.client.fetch_all(category)
            loaded[category] = self.store.store_records(category, records)
            logger.info(f"Loaded {loaded[category]} {category.value}")

        logger.info(f"Open5e load complete: {sum(loaded.values())} records")
        return loaded


# ----------------------------------------------------------------------
# grimoire-init
# ----------------------------------------------------------------------

def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Populate the local Open5e reference database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Load whatever is missing
  grimoire-init

  # Wipe and reload everything
  grimoire-init --force
        """,
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Clear the reference tables and reload every category"
    )
    return parser.parse_args(argv)


async def _run(settings: Settings, force: bool) -> dict[Category, int]:
    store = ReferenceStore(settings.database_path)
    try:
        async with Open5eClient.from_settings(settings) as client:
            return await BulkLoader(client, store).load(force=force)
    finally:
        store.close()


def main(argv: list[str] | None = None) -> None:
    """Entry point for grimoire-init."""
    args = parse_args(argv)

    try:
        settings = Settings.from_env()
        logging.basicConfig(level=settings.log_level)
        loaded = asyncio.run(_run(settings, args.force))
    except GrimoireError as e:
        logger.error(f"Open5e load failed: {e.message}")
        print(f"✗ Failed to load Open5e data: {e.message}", file=sys.stderr)
        sys.exit(1)

    if not loaded:
        print("✓ Open5e data already loaded, nothing to do")
        return
    for category, count in loaded.items():
        print(f"  ✓ {category.value}: {count}")
    print(f"✓ Loaded {sum(loaded.values())} records into {settings.database_path}")


if __name__ == "__main__":
    main()
