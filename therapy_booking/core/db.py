from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from .config import settings
from .base import Base

engine = create_async_engine(settings.DATABASE_URL, pool_pre_ping=True)
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

async def get_session():
    async with SessionLocal() as session:
        yield session

def import_models():
    # registers every mapped table on Base.metadata
    from therapy_booking.modules.directory import models as _directory  # noqa: F401
    from therapy_booking.modules.availability import models as _availability  # noqa: F401
    from therapy_booking.modules.calendar import models as _calendar  # noqa: F401
    from therapy_booking.modules.bookings import models as _bookings  # noqa: F401
    from therapy_booking.modules.notifications import models as _notifications  # noqa: F401
    from therapy_booking.modules.events import outbox as _outbox  # noqa: F401

async def init_models():
    ## In dev-only "create_all" mode, keep old behavior; otherwise, migrations own the schema.
    if settings.DB_MANAGE == "create_all":
        import_models()
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
