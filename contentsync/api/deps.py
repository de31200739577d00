"""Shared API dependencies: settings, DB session, sync engine."""

from __future__ import annotations

from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from contentsync.config import Settings
from contentsync.services.sync_service import SyncEngine


def get_settings(request: Request) -> Settings:
    """Get application settings from app state."""
    settings: Settings = request.app.state.settings
    return settings


async def get_session(request: Request) -> AsyncGenerator[AsyncSession]:
    """Get a database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        yield session


def get_sync_engine(request: Request) -> SyncEngine:
    """Get the sync engine built during startup."""
    engine: SyncEngine = request.app.state.sync_engine
    return engine
