# storefront/scripts/check_db.py
import asyncio
from dotenv import load_dotenv
load_dotenv()
from sqlalchemy import select

from storefront.db import AsyncSessionLocal, dispose_engine
from storefront.models import Order, Product
from storefront.utils import format_price

LOW_STOCK = 5


async def main():
    async with AsyncSessionLocal() as session:
        r = await session.execute(select(Order).order_by(Order.created_at.desc()).limit(5))
        for o in r.scalars():
            print(o.order_number, o.user_id, o.status.value, o.payment_status.value, format_price(o.total))
        r2 = await session.execute(select(Product).where(Product.inventory <= LOW_STOCK).order_by(Product.inventory))
        for p in r2.scalars():
            print("low stock:", p.slug, p.inventory)
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
