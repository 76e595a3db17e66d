from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine


def create_session_factory(database_url: str) -> tuple[AsyncEngine, async_sessionmaker]:
    """Build the engine and session factory owned by the application lifespan."""
    engine = create_async_engine(database_url, pool_size=20, pool_pre_ping=True)
    return engine, async_sessionmaker(engine, expire_on_commit=False)
