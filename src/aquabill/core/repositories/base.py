"""Base repository for common CRUD operations."""

from __future__ import annotations

from typing import Generic, Type, TypeVar
from uuid import UUID

from tortoise.models import Model

from aquabill.core.exceptions import NotFound

ModelType = TypeVar("ModelType", bound=Model)


class BaseRepository(Generic[ModelType]):
    """Generic repository with basic CRUD methods."""

    def __init__(self, model: Type[ModelType]):
        self.model = model

    async def get(self, pk: UUID | str) -> ModelType | None:
        """Get a model instance by its primary key."""
        return await self.model.get_or_none(id=pk)

    async def get_required(self, pk: UUID | str) -> ModelType:
        """Get a model instance by its primary key or raise ``NotFound``."""
        instance = await self.get(pk)
        if instance is None:
            raise NotFound(f"{self.model.__name__} {pk} not found.")
        return instance

    async def create(self, **kwargs) -> ModelType:
        """Create a new model instance."""
        return await self.model.create(**kwargs)
