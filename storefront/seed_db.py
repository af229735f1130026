# storefront/seed_db.py
import sys
import asyncio, json
import logging
from pathlib import Path
from dotenv import load_dotenv
load_dotenv()

from .db import get_engine, init_db, AsyncSessionLocal, dispose_engine
from . import crud
from .utils import quantize_crypto, quantize_fiat
from .validation import ValidationError

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent / "data"
PRODUCTS_FILE = DATA_DIR / "products.json"


async def seed_products(session, records):
    """Insert every valid record whose slug is not taken yet. Returns (created, rejected)."""
    created, rejected = 0, []
    for rec in records:
        if await crud.get_product_by_slug(session, rec.get("slug", "")):
            continue
        extra = {k: rec[k] for k in ("status", "price_eth", "price_usdc", "file_url", "file_type", "license") if k in rec}
        form = {k: v for k, v in rec.items() if k not in extra}
        if "price_eth" in extra:
            extra["price_eth"] = quantize_crypto(extra["price_eth"])
        if "price_usdc" in extra:
            extra["price_usdc"] = quantize_fiat(extra["price_usdc"])
        try:
            await crud.create_product(session, form, **extra)
            created += 1
        except ValidationError as e:
            logger.warning("skipping product %r: %s", rec.get("slug"), e)
            rejected.append((rec.get("slug"), e.as_dict()))
    return created, rejected


async def seed(path: Path = PRODUCTS_FILE):
    await init_db(get_engine())
    with open(path, "r", encoding="utf-8") as f:
        records = json.load(f)

    async with AsyncSessionLocal() as session:
        created, rejected = await seed_products(session, records)
    await dispose_engine()
    logger.info("Seeded DB with %d products (%d rejected)", created, len(rejected))


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(seed(Path(sys.argv[1]) if len(sys.argv) > 1 else PRODUCTS_FILE))
