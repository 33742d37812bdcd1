from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool
from supabase import Client, create_client

from coopgov.backend.abstract import AbstractBackend
from coopgov.backend.memory import MemoryBackend
from coopgov.backend.supabase import SupabaseBackend
from coopgov.config import config


def get_backend() -> AbstractBackend:
    """Get the backend implementation based on configuration."""
    if config.db.backend == "supabase":
        return _get_supabase_backend()
    elif config.db.backend == "memory":
        return MemoryBackend()
    else:
        raise ValueError(f"Unsupported backend: {config.db.backend}")


def _get_supabase_backend() -> SupabaseBackend:
    """Get a Supabase backend implementation."""
    client: Client = create_client(config.db.url, config.db.service_key)
    DATABASE_URL = f"postgresql+psycopg2://{config.db.user}:{config.db.password}@{config.db.host}:{config.db.port}/{config.db.dbname}?sslmode=require"
    engine = create_engine(DATABASE_URL, poolclass=NullPool)
    return SupabaseBackend(client=client, sqlalchemy_engine=engine)


# Create an instance
backend = get_backend()
