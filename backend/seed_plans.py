import argparse
import asyncio
import sys
from pathlib import Path

from dotenv import load_dotenv

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

from backend.app.config import load_database_config, load_matching_config
from backend.app.marketplace.postgres import (
    PostgresMarketplaceRepository,
    create_marketplace_pool,
    create_schema,
)
from backend.app.subscriptions import SubscriptionService

load_dotenv()


async def seed(create_tables: bool) -> int:
    config = load_matching_config()
    pool = await create_marketplace_pool(load_database_config())
    try:
        if create_tables:
            await create_schema(pool)
        repository = PostgresMarketplaceRepository(pool)
        service = SubscriptionService(repository, repository, period_days=config.billing_period_days)
        return await service.ensure_plans_seeded()
    finally:
        await pool.close()


def main():
    parser = argparse.ArgumentParser(description="Seed the default subscription plans.")
    parser.add_argument("--create-schema", action="store_true", help="create missing tables first")
    args = parser.parse_args()

    inserted = asyncio.run(seed(args.create_schema))
    print(f"Done. Inserted {inserted} plan(s); existing plans were left unchanged.")


if __name__ == "__main__":
    main()
