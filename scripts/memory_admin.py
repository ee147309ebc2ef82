"""
CLI utility for memory database administration.

Usage:
    python scripts/memory_admin.py --stats
    python scripts/memory_admin.py --cleanup-jobs --retention-days 30
    python scripts/memory_admin.py --wipe U123
    python scripts/memory_admin.py --purge-cache
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from diary_memory.config.settings import Settings, StorageCfg, configure_logging
from diary_memory.memory.integrate import MemoryIntegration, create_memory_integration
from diary_memory.persist import TABLES


def format_bytes(bytes_val: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KB", "MB", "GB"]:
        if bytes_val < 1024:
            return f"{bytes_val:.1f} {unit}"
        bytes_val /= 1024
    return f"{bytes_val:.1f} TB"


def open_memory(db_path: Path, settings: Optional[Settings] = None) -> MemoryIntegration:
    settings = settings or Settings()
    settings = settings.model_copy(update={"storage": StorageCfg(db_path=str(db_path))})
    return create_memory_integration(settings)


def show_stats(memory: MemoryIntegration) -> int:
    """
    Display table sizes, active memory counts and job states.

    Args:
        memory: Opened memory integration
    """
    db = memory.store.db
    print(f"📊 Memory Statistics: {db.db_path}\n")

    print(f"{'Table':<18} {'Rows':>10} {'Size':>12}")
    print("=" * 42)
    for table in TABLES:
        stats = db.stats(table)
        print(f"{table:<18} {stats['count']:>10,} {format_bytes(stats['total_bytes']):>12}")
    print("=" * 42)

    owners = memory.store.owners_with_memories()
    active = sum(memory.store.count_active(owner) for owner in owners)
    print(f"\nOwners with memories: {len(owners):,}")
    print(f"Active memories:      {active:,}")

    cache = memory.cache.stats()
    print(f"Cached contexts:      {cache['count']:,} ({cache['valid']:,} valid)")

    print("\nExtraction jobs:")
    for status in ("pending", "processing", "completed", "failed"):
        count = db.count("extraction_jobs", {"status": status})
        print(f"   {status:<12} {count:>8,}")
    print()
    return 0


def cleanup_jobs(memory: MemoryIntegration, retention_days: int) -> int:
    removed = memory.jobs.cleanup_old_jobs(retention_days)
    print(f"🗑️  Removed {removed:,} finished jobs older than {retention_days} days")
    return 0


def wipe_owner(memory: MemoryIntegration, owner: str) -> int:
    """Hard-delete every memory of one owner."""
    removed = memory.wipe(owner)
    print(f"🗑️  Wiped {removed:,} memories for {owner}")
    return 0


def purge_cache(memory: MemoryIntegration) -> int:
    purged = memory.cache.purge()
    print(f"🗑️  Purged {purged:,} cached contexts")

    print("\n🔧 Vacuuming database...")
    memory.store.db.vacuum()
    print("   ✓ Done")
    return 0


def main(argv=None):
    """CLI entrypoint."""
    parser = argparse.ArgumentParser(
        description="Manage the diary memory database (stats, job cleanup, wipes)"
    )
    parser.add_argument("--stats", action="store_true", help="Show database statistics")
    parser.add_argument(
        "--cleanup-jobs",
        action="store_true",
        help="Remove completed/failed extraction jobs past the retention window",
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=None,
        help="Job retention in days (default from settings: 30)",
    )
    parser.add_argument("--wipe", metavar="OWNER", help="Hard-delete all memories of OWNER")
    parser.add_argument("--purge-cache", action="store_true", help="Drop every cached context")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Database path (default from settings: data/memory/memory.db)",
    )
    parser.add_argument("--config", type=Path, default=None, help="Settings JSON file")

    args = parser.parse_args(argv)

    if not (args.stats or args.cleanup_jobs or args.wipe or args.purge_cache):
        parser.print_help()
        print("\n❌ Error: Must specify --stats, --cleanup-jobs, --wipe or --purge-cache")
        return 1

    settings = Settings.from_file(args.config)
    configure_logging(settings)
    db_path = args.db or Path(settings.storage.db_path)
    if not db_path.exists():
        print(f"❌ Memory database not found: {db_path}")
        return 1

    memory = open_memory(db_path, settings)
    try:
        exit_code = 0
        if args.cleanup_jobs:
            days = args.retention_days
            if days is None:
                days = settings.extraction.retention_days
            exit_code = exit_code or cleanup_jobs(memory, days)
        if args.wipe:
            exit_code = exit_code or wipe_owner(memory, args.wipe)
        if args.purge_cache:
            exit_code = exit_code or purge_cache(memory)
        if args.stats:
            exit_code = exit_code or show_stats(memory)
    finally:
        memory.store.db.close()

    print("✅ Done" if exit_code == 0 else "❌ Failed")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
