from __future__ import annotations

import asyncio
import sys

from tenantmigrate.core.config import get_settings
from tenantmigrate.core.log import configure_logging
from tenantmigrate.persistence.db import open_store_handles
from tenantmigrate.services.provisioning import build_storage_admin
from tenantmigrate.services.schema_sync import sync_tenant_schemas


async def _sync() -> int:
    settings = get_settings()
    admin = build_storage_admin(settings)
    try:
        async with open_store_handles(settings) as handles:
            results = await sync_tenant_schemas(handles, admin)
    finally:
        await admin.dispose()
    for result in results:
        print(result.render())
    failed = sum(1 for result in results if result.status == "failed")
    print(f"tenants={len(results)} failed={failed}")
    return 1 if failed else 0


if __name__ == "__main__":
    configure_logging(get_settings().log_level)
    sys.exit(asyncio.run(_sync()))
