"""
Base Repository for the Entitlement Engine

Generic async repository bound to one session, mapping between SQLModel
rows and pydantic domain entities. Writes to versioned tables are
compare-and-swap updates: the row changes only if its version still equals
the version the caller read.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel as DomainModel
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import SQLModel

from app.infrastructure.exceptions import StaleWriteError


# Type variables for generic repository
ModelType = TypeVar("ModelType", bound=SQLModel)
DomainType = TypeVar("DomainType", bound=DomainModel)


class IReadRepository(ABC, Generic[DomainType]):
    """Interface for read operations."""

    @abstractmethod
    async def get_by_id(self, id: str) -> Optional[DomainType]:
        """Get a single record by ID."""
        pass


class IVersionedWriteRepository(ABC, Generic[DomainType]):
    """Interface for inserts and conditional updates."""

    @abstractmethod
    async def add(self, entity: DomainType) -> DomainType:
        """Insert a new record at version 0."""
        pass

    @abstractmethod
    async def compare_and_swap(self, entity: DomainType, expected_version: int) -> DomainType:
        """Write the entity if the stored version equals expected_version."""
        pass


class BaseRepository(
    IReadRepository[DomainType],
    IVersionedWriteRepository[DomainType],
    Generic[ModelType, DomainType],
):
    """
    Generic async repository with versioned writes.

    Subclasses provide the row <-> entity mapping.

    Args:
        session: Async database session owned by the caller
    """

    model: Type[ModelType]
    entity_name: str = "Entity"

    def __init__(self, session: AsyncSession):
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Get the current session."""
        return self._session

    # =========================================================================
    # Mapping
    # =========================================================================

    @abstractmethod
    def _to_domain(self, model: ModelType) -> DomainType:
        """Convert database row to domain entity."""

    @abstractmethod
    def _to_values(self, entity: DomainType) -> Dict[str, Any]:
        """Column values for an entity, excluding id and version."""

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_by_id(self, id: str) -> Optional[DomainType]:
        model = await self._session.get(self.model, id)
        return self._to_domain(model) if model else None

    async def _first(self, statement) -> Optional[DomainType]:
        result = await self._session.execute(statement)
        model = result.scalars().first()
        return self._to_domain(model) if model else None

    async def _all(self, statement) -> List[DomainType]:
        result = await self._session.execute(statement)
        return [self._to_domain(model) for model in result.scalars().all()]

    # =========================================================================
    # Writes
    # =========================================================================

    async def add(self, entity: DomainType) -> DomainType:
        """
        Insert a new row.

        Flushes so unique violations surface inside the caller's session.
        """
        model = self.model(id=entity.id, version=0, **self._to_values(entity))
        self._session.add(model)
        await self._session.flush()
        return entity.model_copy(update={"version": 0})

    async def compare_and_swap(self, entity: DomainType, expected_version: int) -> DomainType:
        """
        Conditional update on (id, version).

        Raises:
            StaleWriteError: If no row matched, i.e. a concurrent writer won
        """
        new_version = expected_version + 1
        statement = (
            update(self.model)
            .where(self.model.id == entity.id)
            .where(self.model.version == expected_version)
            .values(version=new_version, **self._to_values(entity))
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(statement)
        if result.rowcount != 1:
            raise StaleWriteError(self.entity_name, entity.id, expected_version)
        return entity.model_copy(update={"version": new_version})
