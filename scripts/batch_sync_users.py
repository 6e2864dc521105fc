#!/usr/bin/env python3
"""
Sync every Store B auth identity into the Store A and Store B profile tables.

Usage:
    python scripts/batch_sync_users.py                        # Sync everyone
    python scripts/batch_sync_users.py --batch-size 100       # Bigger pages
    python scripts/batch_sync_users.py --quality-threshold 60 # Skip low-quality identities
    python scripts/batch_sync_users.py --user <uuid>          # Sync one user
    python scripts/batch_sync_users.py --status <uuid>        # Show sync status only
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dualstore.core.circuit_breaker import BreakerStateStore, CircuitBreakerRegistry
from dualstore.core.config import settings
from dualstore.db import create_db_and_tables, engine
from dualstore.services.dual_write import DualWriteCoordinator
from dualstore.services.store_a import StoreAAdapter
from dualstore.services.store_b import StoreBAdapter
from dualstore.services.user_sync import UserSyncService


async def main():
    parser = argparse.ArgumentParser(description="Sync Store B identities into both profile tables")
    parser.add_argument("--batch-size", type=int, default=50, help="Identities per page")
    parser.add_argument("--quality-threshold", type=int, default=0, help="Skip identities scoring below this")
    parser.add_argument("--stop-on-error", action="store_true", help="Stop after the first page with a failure")
    parser.add_argument("--force", action="store_true", help="Rewrite profiles even when unchanged (--user only)")
    parser.add_argument("--user", help="Sync a single user id")
    parser.add_argument("--status", help="Print sync status for a single user id")
    args = parser.parse_args()

    if not settings.store_b_configured:
        print("Store B is not configured (SUPABASE_URL / STORE_B_ENABLED); nothing to sync.")
        sys.exit(1)

    create_db_and_tables(engine)
    registry = CircuitBreakerRegistry(
        failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
        open_timeout=settings.CIRCUIT_OPEN_TIMEOUT,
        store=BreakerStateStore(engine) if settings.CIRCUIT_PERSIST else None,
    )
    store_a = StoreAAdapter(engine)
    store_b = StoreBAdapter(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_ROLE_KEY,
        timeout=settings.STORE_B_HTTP_TIMEOUT,
    )
    coordinator = DualWriteCoordinator(store_a, store_b, registry)
    service = UserSyncService(coordinator, store_a, store_b)

    try:
        if args.status:
            status = await service.get_sync_status(args.status)
            print(status.model_dump_json(indent=2))
            return

        if args.user:
            result = await service.sync_user(args.user, force_update=args.force)
            print(result.model_dump_json(indent=2, exclude={"write"}))
            if not result.success:
                sys.exit(1)
            return

        summary = await service.batch_sync(
            batch_size=args.batch_size,
            skip_errors=not args.stop_on_error,
            quality_threshold=args.quality_threshold,
        )
        print(summary.summary)
        for result in summary.results:
            if not result.success:
                print(f"  {result.user_id}: {'; '.join(result.errors)}")
        print(f"Breakers: {coordinator.breaker_states()}")
    finally:
        await store_b.aclose()
        if registry.store:
            registry.store.close()


if __name__ == "__main__":
    asyncio.run(main())
