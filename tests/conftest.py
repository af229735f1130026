"""Shared fixtures: a throwaway SQLite database per test."""
import copy

import pytest
import pytest_asyncio

from storefront.db import make_engine, make_sessionmaker, init_db
from storefront import crud


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Engine on a fresh SQLite file with every table created."""
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session(engine):
    async with make_sessionmaker(engine)() as s:
        yield s


@pytest_asyncio.fixture
async def customer(session):
    return await crud.create_user(session, email="ada@lovelace.io", name="Ada",
                                  wallet_address="0xABCDEF0123456789")


@pytest_asyncio.fixture
async def product(session):
    return await crud.create_product(
        session,
        {"name": "Parser Kit", "slug": "parser-kit", "price": 19.5, "inventory": 10, "category": "scripts"},
        status="active",
    )


@pytest_asyncio.fixture
async def other_product(session):
    return await crud.create_product(
        session,
        {"name": "Deploy Hooks", "slug": "deploy-hooks", "price": 5, "inventory": 3, "category": "scripts"},
        status="active",
    )


CHECKOUT = {
    "shippingAddress": {
        "name": "Ada Lovelace",
        "address": "12 Analytical Way",
        "city": "London",
        "state": "LN",
        "zip": "12345",
        "country": "UK",
    },
    "paymentMethod": "card",
}


@pytest.fixture
def checkout():
    return copy.deepcopy(CHECKOUT)
