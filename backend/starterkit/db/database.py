"""Async engine construction from the configured connection."""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool

from starterkit.core.credential_store import CredentialStore


def create_engine_for(credentials: CredentialStore, **kwargs) -> AsyncEngine:
    """Build an engine for the connection currently stored in the env file.

    A fresh engine per call picks up credentials saved by the setup wizard
    without restarting the process.
    """
    config = credentials.read()
    kwargs.setdefault("poolclass", NullPool)
    return create_async_engine(config.sqlalchemy_url(), **kwargs)
