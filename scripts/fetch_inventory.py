"""
Fetch an NFT inventory through the tiered cache.

Reads configuration from the environment (and .env), optionally
overridden on the command line, then prints the collection as it grows.

Usage:
    python scripts/fetch_inventory.py --owner 0x... --source alchemy
    python scripts/fetch_inventory.py --refresh
"""

import argparse
import asyncio
import logging
import sys
from collections import Counter
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from nft_inventory import (
    InventoryConfig,
    InventoryError,
    InventorySnapshot,
    close_all,
    configure_logging,
    create_cache,
)
from nft_inventory.config import LISTING_SOURCES


logger = logging.getLogger(__name__)


def print_banner(text: str) -> None:
    """Print a banner."""
    print("\n" + "=" * 60)
    print(f"  {text}")
    print("=" * 60)


def print_progress(snapshot: InventorySnapshot) -> None:
    resolved = sum(1 for record in snapshot if record.is_resolved)
    print(
        f"  [{snapshot.state.value:>18}] {len(snapshot):>5}/{snapshot.total_count} records, "
        f"{resolved} with metadata"
    )


async def run(args: argparse.Namespace) -> int:
    config = InventoryConfig.from_env(load_env_file=False)
    if args.owner:
        config.owner = args.owner
    if args.source:
        config.listing_source = args.source

    try:
        cache = create_cache(config)
    except InventoryError as e:
        print(f"Configuration error: {e}")
        return 2

    print_banner(f"Inventory via {config.listing_source}")
    cache.pipeline.subscribe(print_progress)

    try:
        result = await (cache.refresh() if args.refresh else cache.get())
    except InventoryError as e:
        print(f"Failed: {e}")
        return 1
    finally:
        await close_all(cache)

    print_banner(f"{len(result)} records (source={result.source}, stale={result.is_stale})")
    kinds = Counter(record.kind.value for record in result.records)
    for kind, count in sorted(kinds.items()):
        print(f"  {kind:<8} {count}")
    for record in result.records[:args.show]:
        print(f"  #{record.token_id:<6} {record.kind.value:<7} {record.name}  {record.image_url}")

    stats = cache.pipeline.stats()
    print(f"\n  Pipeline: {stats['publishes']} publishes, {stats['dropped_ids']} ids dropped")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Fetch an NFT inventory through the tiered cache",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--owner", help="Wallet address to list (overrides INVENTORY_OWNER)")
    parser.add_argument("--source", choices=LISTING_SOURCES, help="Listing strategy")
    parser.add_argument("--refresh", action="store_true", help="Bypass the memory cache")
    parser.add_argument("--show", type=int, default=10, help="Records to print")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    configure_logging(args.log_level)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\nInterrupted")


if __name__ == "__main__":
    main()
