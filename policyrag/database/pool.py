import asyncpg
from .settings import DatabaseSettings


async def register_vector_codec(conn: asyncpg.Connection) -> None:
    """Encode/decode pgvector columns as plain Python float lists."""
    await conn.set_type_codec(
        'vector',
        encoder=lambda v: '[' + ','.join(str(float(x)) for x in v) + ']',
        decoder=lambda s: [float(x) for x in s.strip('[]').split(',')] if s.strip('[]') else [],
        schema='public',
        format='text',
    )


async def create_pool(settings: DatabaseSettings) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        host=settings.host,
        port=settings.port,
        database=settings.database,
        user=settings.user,
        password=settings.password,
        ssl=settings.ssl_mode or "require",
        min_size=settings.min_pool_size,
        max_size=settings.max_pool_size,
        init=register_vector_codec,
    )
