"""
Base repository class with common database operations.

This module provides the foundation for all repository classes,
implementing common patterns like lookups, counting and simple CRUD.
"""
from typing import Any, Generic, Sequence, Type, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mtg_ingest.db.base import Base

# Type variable for generic repository
ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """
    Base repository implementing common database operations.

    Usage:
        class ImportLogRepository(BaseRepository[ImportLog]):
            def __init__(self, db: AsyncSession):
                super().__init__(ImportLog, db)

        log = await ImportLogRepository(db).create(import_type="mtgjson", ...)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        """
        Initialize the repository.

        Args:
            model: SQLAlchemy model class this repository manages
            db: Async database session
        """
        self.model = model
        self.db = db

    async def get_by_id(self, id: int) -> ModelType | None:
        """
        Get a single record by its primary key.

        Args:
            id: Primary key value

        Returns:
            Model instance or None if not found
        """
        result = await self.db.execute(
            select(self.model).where(self.model.id == id)
        )
        return result.scalar_one_or_none()

    async def count(self, **kwargs: Any) -> int:
        """
        Count records, optionally filtered by column values.

        Args:
            **kwargs: Column name/value pairs to filter by

        Returns:
            Number of matching records
        """
        query = select(func.count()).select_from(self.model)
        for key, value in kwargs.items():
            if hasattr(self.model, key):
                query = query.where(getattr(self.model, key) == value)
        result = await self.db.execute(query)
        return result.scalar() or 0

    async def create(self, **kwargs: Any) -> ModelType:
        """
        Create a new record.

        Args:
            **kwargs: Column name/value pairs for the new record

        Returns:
            Created model instance
        """
        instance = self.model(**kwargs)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    async def update(self, instance: ModelType, **kwargs: Any) -> ModelType:
        """
        Update an already-loaded record.

        Args:
            instance: Model instance to update
            **kwargs: Column name/value pairs to update

        Returns:
            Refreshed model instance
        """
        for key, value in kwargs.items():
            if hasattr(instance, key):
                setattr(instance, key, value)

        await self.db.flush()
        await self.db.refresh(instance)
        return instance
