from __future__ import annotations

import asyncio

from tenantmigrate.core.config import get_settings
from tenantmigrate.core.log import configure_logging
from tenantmigrate.persistence.db import open_store_handles
from tenantmigrate.services.inventory import collect_inventory


async def check() -> None:
    # Print per-owner source row counts to compare against a migration report.
    async with open_store_handles() as handles:
        inventory = await collect_inventory(handles)
    for line in inventory.render_lines():
        print(line)


if __name__ == "__main__":
    configure_logging(get_settings().log_level)
    asyncio.run(check())
