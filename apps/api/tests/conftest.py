import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, Iterable, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.future import select

from database import Base, get_db
from main import app
from models.balance import UserRestaurantBalance
from models.group import GroupMembership, RestaurantGroup
from models.restaurant import Restaurant
from models.subscription import Plan, Subscription
from models.top_up import TopUpPackage
from models.user import Role, User
from routers import rate_limit
from services.passwords import hash_password
from services.session_token import create_access_token

TEST_PASSWORD = "correct-horse-battery"

# Paris, Place de la Concorde.
RESTAURANT_LAT = 48.8656
RESTAURANT_LON = 2.3212


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit._local_counters.clear()
    yield
    rate_limit._local_counters.clear()
    app.state.disable_rate_limits = previous


def auth_header(user: User) -> Dict[str, str]:
    token = create_access_token(user.id, user.role)["token"]
    return {"Authorization": f"Bearer {token}"}


class Seeder:
    """Writes fixture rows straight into the test database."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def _save(self, *rows):
        async with self.session_maker() as db:
            for row in rows:
                db.add(row)
            await db.commit()
        return rows[0] if len(rows) == 1 else rows

    async def user(
        self,
        email: Optional[str] = None,
        role: Role = Role.USER,
        full_name: str = "Test User",
        firebase_token: Optional[str] = None,
    ) -> User:
        return await self._save(
            User(
                id=str(uuid.uuid4()),
                email=email or f"{uuid.uuid4().hex[:10]}@example.com",
                password_hash=hash_password(TEST_PASSWORD),
                full_name=full_name,
                role=role.value,
                qr_code=f"user-{uuid.uuid4().hex}",
                firebase_token=firebase_token,
            )
        )

    async def restaurant(
        self,
        restaurant_id: Optional[str] = None,
        name: str = "Chez Test",
        latitude: float = RESTAURANT_LAT,
        longitude: float = RESTAURANT_LON,
        owner: Optional[User] = None,
        is_subscription_active: bool = True,
    ) -> Restaurant:
        if owner is None:
            owner = await self.user(role=Role.RESTAURANT_OWNER, full_name=f"{name} Owner")
        rid = restaurant_id or str(uuid.uuid4())
        return await self._save(
            Restaurant(
                id=rid,
                user_id=owner.id,
                name=name,
                address="1 Rue de Test, Paris",
                latitude=latitude,
                longitude=longitude,
                qr_code_meal=f"meal-{rid}",
                qr_code_drink=f"drink-{rid}",
                is_active=is_subscription_active,
                is_subscription_active=is_subscription_active,
            )
        )

    async def owner_of(self, restaurant: Restaurant) -> User:
        async with self.session_maker() as db:
            result = await db.execute(select(User).where(User.id == restaurant.user_id))
            return result.scalar_one()

    async def balance(
        self,
        user: User,
        restaurant: Restaurant,
        balance: str = "0",
        stars_meal: int = 0,
        stars_drink: int = 0,
    ) -> UserRestaurantBalance:
        return await self._save(
            UserRestaurantBalance(
                user_id=user.id,
                restaurant_id=restaurant.id,
                balance=Decimal(balance),
                stars_meal=stars_meal,
                stars_drink=stars_drink,
            )
        )

    async def group(
        self,
        owner: Restaurant,
        members: Iterable[Restaurant] = (),
        name: str = "Test Group",
        group_id: Optional[str] = None,
    ) -> RestaurantGroup:
        group = RestaurantGroup(id=group_id or str(uuid.uuid4()), name=name, owner_id=owner.id)
        async with self.session_maker() as db:
            db.add(group)
            await db.flush()
            for member in members:
                db.add(GroupMembership(group_id=group.id, restaurant_id=member.id))
            await db.commit()
        return group

    async def package(
        self,
        restaurant: Restaurant,
        name: str = "Starter",
        amount: str = "20.00",
        bonus: str = "5.00",
        is_active: bool = True,
        is_public: bool = True,
    ) -> TopUpPackage:
        return await self._save(
            TopUpPackage(
                id=str(uuid.uuid4()),
                restaurant_id=restaurant.id,
                name=name,
                amount=Decimal(amount),
                bonus=Decimal(bonus),
                currency="EUR",
                is_active=is_active,
                is_public=is_public,
            )
        )

    async def plan(self, title: str = "Monthly", price: str = "29.00", duration: int = 30, is_active: bool = True) -> Plan:
        return await self._save(
            Plan(
                id=str(uuid.uuid4()),
                title=title,
                price=Decimal(price),
                currency="EUR",
                duration=duration,
                is_active=is_active,
            )
        )

    async def subscription(
        self,
        restaurant: Restaurant,
        plan: Plan,
        status: str = "ACTIVE",
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> Subscription:
        now = datetime.now(timezone.utc)
        return await self._save(
            Subscription(
                id=str(uuid.uuid4()),
                restaurant_id=restaurant.id,
                plan_id=plan.id,
                start_date=start_date or now - timedelta(days=1),
                end_date=end_date or now + timedelta(days=10),
                status=status,
            )
        )

    async def get(self, model, **filters):
        async with self.session_maker() as db:
            result = await db.execute(select(model).filter_by(**filters))
            return result.scalars().first()

    async def all(self, model, **filters):
        async with self.session_maker() as db:
            result = await db.execute(select(model).filter_by(**filters))
            return list(result.scalars().all())


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    db_path = tmp_path / "loyalty.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()


@pytest.fixture
def seed(session_maker):
    return Seeder(session_maker)


@pytest_asyncio.fixture
async def integration_client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.pop(get_db, None)


@pytest.fixture
def headers_for():
    return auth_header
