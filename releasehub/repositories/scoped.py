"""
Tenant-scoped data access.

SECURITY: every read, existence check, update and soft delete issued through
this module carries the tenant_id predicate of the TenantContext the
repository was built with. There is no way to construct a repository
without a context, so the scope cannot be forgotten.
"""
from datetime import datetime
from typing import Any, Generic, Sequence, TypeVar

from sqlalchemy import Select, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from releasehub.clock import Clock, system_clock
from releasehub.exceptions import TenantIsolationError
from releasehub.tenancy import TenantContext


ModelT = TypeVar("ModelT")


class TenantScopedRepository(Generic[ModelT]):
    """Repository for one tenant-owned model."""

    def __init__(
        self,
        db: AsyncSession,
        model: type[ModelT],
        context: TenantContext,
        clock: Clock = system_clock,
    ):
        if context is None:
            raise TenantIsolationError("A tenant context is required for data access")
        self.db = db
        self.model = model
        self.context = context
        self.clock = clock

    def _scope(self, stmt):
        """Apply tenant and soft-delete predicates to a select or update."""
        if not self.context.cross_tenant:
            stmt = stmt.where(self.model.tenant_id == self.context.tenant_id)
        return stmt.where(self.model.is_deleted.is_(False))

    def query(self) -> Select:
        """Base SELECT for this model, already scoped."""
        return self._scope(select(self.model)).execution_options(populate_existing=True)

    def update_query(self):
        """Base UPDATE for this model, already scoped."""
        return self._scope(update(self.model)).execution_options(synchronize_session=False)

    async def get(self, entity_id: int) -> ModelT | None:
        result = await self.db.execute(self.query().where(self.model.id == entity_id))
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> ModelT | None:
        result = await self.db.execute(self.query().where(self.model.external_id == external_id))
        return result.scalar_one_or_none()

    async def exists(self, entity_id: int) -> bool:
        stmt = self._scope(select(func.count()).select_from(self.model)).where(self.model.id == entity_id)
        result = await self.db.execute(stmt)
        return result.scalar_one() > 0

    async def find_all(self, *criteria, order_by=None, offset: int = 0, limit: int | None = None) -> list[ModelT]:
        stmt = self.query().where(*criteria)
        if order_by is not None:
            stmt = stmt.order_by(*order_by) if isinstance(order_by, (list, tuple)) else stmt.order_by(order_by)
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count(self, *criteria) -> int:
        stmt = self._scope(select(func.count()).select_from(self.model)).where(*criteria)
        result = await self.db.execute(stmt)
        return result.scalar_one()

    def add(self, entity: ModelT, now: datetime | None = None) -> ModelT:
        """
        Stage a new entity, stamping tenant and creator server-side.

        Caller-supplied tenant ids are overwritten unless the context is a
        cross-tenant operator, which must then name the tenant explicitly.
        """
        if self.context.cross_tenant:
            if not getattr(entity, "tenant_id", None):
                raise TenantIsolationError("Cross-tenant creates must name the owning tenant")
        else:
            entity.tenant_id = self.context.tenant_id
        entity.created_by = self.context.user_id
        entity.created_at = now or self.clock.now()
        self.db.add(entity)
        return entity

    async def conditional_update(self, entity_id: int, expected: dict[str, Any], values: dict[str, Any]) -> bool:
        """
        UPDATE ... WHERE id = :id AND <expected columns match>, scoped.

        Returns False when no row matched, meaning the row is gone, invisible
        to this tenant, or its state moved on since it was read.
        """
        stmt = self.update_query().where(self.model.id == entity_id)
        for column, value in expected.items():
            attr = getattr(self.model, column)
            stmt = stmt.where(attr.is_(None) if value is None else attr == value)
        result = await self.db.execute(stmt.values(**self.audit_values(values)))
        return result.rowcount > 0

    def audit_values(self, values: dict[str, Any]) -> dict[str, Any]:
        return {
            **values,
            "modified_at": values.get("modified_at", self.clock.now()),
            "modified_by": self.context.user_id,
        }

    async def soft_delete(self, entity_id: int) -> bool:
        return await self.conditional_update(entity_id, {"is_deleted": False}, {"is_deleted": True})


def scoped(db: AsyncSession, context: TenantContext, clock: Clock, *models) -> Sequence[TenantScopedRepository]:
    """Build one repository per model sharing a session, context and clock."""
    return tuple(TenantScopedRepository(db, model, context, clock) for model in models)
