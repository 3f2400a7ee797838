"""
Lookups into the collaborator-owned users and projects tables.

These are the only reads the analytics core makes outside its own tables.
"""

import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.future import select

from projectshelf.models.project import Project
from projectshelf.models.user import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectOwner:
    exists: bool
    owner_id: int | None = None


@dataclass(frozen=True)
class UserPresence:
    exists: bool


class ProjectLookup(Protocol):
    async def find_project_owner(self, project_id: int) -> ProjectOwner: ...


class UserLookup(Protocol):
    async def find_user(self, user_id: int) -> UserPresence: ...


class SqlProjectLookup:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_project_owner(self, project_id: int) -> ProjectOwner:
        async with self._session_factory() as db:
            result = await db.execute(select(Project.user_id).where(Project.id == project_id))
            owner_id = result.scalar()
        if owner_id is None:
            logger.debug(f"Project {project_id} not found")
            return ProjectOwner(exists=False)
        return ProjectOwner(exists=True, owner_id=owner_id)


class SqlUserLookup:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_user(self, user_id: int) -> UserPresence:
        async with self._session_factory() as db:
            result = await db.execute(select(User.id).where(User.id == user_id))
            return UserPresence(exists=result.scalar() is not None)
