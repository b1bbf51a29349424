"""
Pytest configuration and shared test fixtures.

Every test that touches the database gets its own SQLite file under
``tmp_path`` created through the same engine factory the service uses, so
``BEGIN IMMEDIATE`` write locking is active exactly as in a local
deployment. Products are seeded with fixed ids:

* 1 - Widget, $10.00, 5 in stock
* 2 - Gadget, $4.50, 100 in stock
* 3 - Retired item, $7.00, 10 in stock, inactive
"""

from decimal import Decimal
from typing import Any, AsyncGenerator, Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from src.core.config import Settings
from src.core.security import hash_password
from src.database.connection import create_engine, create_schema, create_session_factory
from src.database.models import Order, Product
from src.services.notifications.dispatcher import NotificationDispatchError
from src.services.notifications.templates import OutboundMessage
from src.services.orders.service import OrderService
from src.services.preconditions.validator import TokenKind, issue_token

ADMIN_PASSWORD = "correct-horse-battery"
TEST_SECRET = "test-secret-key-with-at-least-32-characters"


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture(scope="session")
def admin_password_hash() -> str:
    """
    bcrypt hash of ``ADMIN_PASSWORD``, computed once per session.
    """
    return hash_password(ADMIN_PASSWORD)


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}"


@pytest.fixture
def settings(database_url: str, admin_password_hash: str) -> Settings:
    """
    Test settings with an in-memory session store and a file database.
    """
    return Settings(
        environment="development",
        database_url=database_url,
        secret_key=TEST_SECRET,
        session_backend="memory",
        admin_username="admin",
        admin_password_hash=admin_password_hash,
        notification_webhook_url=None,
    )


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """
    Engine bound to a fresh database with all tables created.
    """
    engine = create_engine(database_url)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
    seeded_products: list[Product],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Session over a seeded database; closed after the test.
    """
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seeded_products(
    session_factory: async_sessionmaker[AsyncSession],
) -> list[Product]:
    products = [
        Product(id=1, name="Widget", price=Decimal("10.00"), stock=5, is_active=True),
        Product(id=2, name="Gadget", price=Decimal("4.50"), stock=100, is_active=True),
        Product(id=3, name="Retired item", price=Decimal("7.00"), stock=10, is_active=False),
    ]
    async with session_factory() as session:
        session.add_all(products)
        await session.commit()
    return products


@pytest.fixture
def read_stock(session_factory: async_sessionmaker[AsyncSession]):
    """
    Read a product's committed stock through a separate session.
    """

    async def _read(product_id: int) -> int:
        async with session_factory() as session:
            product = await session.get(Product, product_id)
            return product.stock

    return _read


@pytest.fixture
def load_order(session_factory: async_sessionmaker[AsyncSession]):
    """
    Load an order with items and notes through a separate session.
    """

    async def _load(order_id) -> Optional[Order]:
        async with session_factory() as session:
            return await session.get(Order, order_id)

    return _load


# ============================================================================
# Tokens and orders
# ============================================================================


@pytest.fixture
def fresh_tokens():
    """
    Build a dict of fresh LOC/INV/TXN tokens for one order.
    """

    def _tokens() -> dict[str, str]:
        return {
            "location_token": issue_token(TokenKind.LOCATION),
            "inventory_token": issue_token(TokenKind.INVENTORY),
            "payment_token": issue_token(TokenKind.PAYMENT),
        }

    return _tokens


class Line:
    """Line item in the shape the order engine reads."""

    def __init__(self, product_id: Any, quantity: Any, unit_price: Any):
        self.product_id = product_id
        self.quantity = quantity
        self.unit_price = unit_price


@pytest.fixture
def line():
    return Line


@pytest.fixture
def place_order(
    session_factory: async_sessionmaker[AsyncSession],
    seeded_products: list[Product],
    settings: Settings,
    fresh_tokens,
):
    """
    Place a valid order for Gadgets through the real order engine.
    """

    async def _place(
        quantity: int = 1,
        customer_id: str = "1001",
        customer_name: str = "Jane Doe",
    ) -> Order:
        total = Decimal("4.50") * quantity
        async with session_factory() as session:
            service = OrderService(session, settings)
            return await service.create_order(
                customer_id=customer_id,
                customer_name=customer_name,
                delivery_address="123 Palm Canyon Dr, Palm Springs, CA 92262",
                phone_number="+1 760 555 0100",
                items=[Line(2, quantity, Decimal("4.50"))],
                declared_total=total,
                **fresh_tokens(),
            )

    return _place


# ============================================================================
# Notification doubles
# ============================================================================


class RecordingDispatcher:
    """Keeps every dispatched message."""

    def __init__(self) -> None:
        self.messages: list[OutboundMessage] = []

    async def dispatch(self, message: OutboundMessage) -> None:
        self.messages.append(message)


class FailingDispatcher:
    """Fails every dispatch the way an unreachable endpoint would."""

    def __init__(self) -> None:
        self.attempts = 0

    async def dispatch(self, message: OutboundMessage) -> None:
        self.attempts += 1
        raise NotificationDispatchError(
            "Notification endpoint returned 502",
            recipient=message.recipient,
            status_code=502,
        )


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher() -> FailingDispatcher:
    return FailingDispatcher()
