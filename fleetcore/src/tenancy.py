"""
Tenant-scoped persistence.

`TenantScope` is the only way to name a tenant, and `TenantRepository` can only
be built from one. Every query a repository issues is filtered by the scope's
company id, and every row it creates is stamped with it. There is no unscoped
lookup: code that needs another tenant's data must build another scope.

Lookups that find nothing return None and leave the 404 decision to the caller,
so a record owned by another tenant is indistinguishable from a missing one.
"""

from typing import Any, List, Optional, Tuple
from sqlalchemy import func
from sqlalchemy.orm import Query
from sqlalchemy.orm.session import Session

from fleetcore.src import exceptions
from fleetcore.src.constants import MAX_PAGE_SIZE


class TenantScope:
    """Validated tenant identity. Immutable once built."""

    __slots__ = ("_company_id",)

    def __init__(self, company_id: Optional[int]):
        if (
            company_id is None
            or isinstance(company_id, bool)
            or not isinstance(company_id, int)
            or company_id <= 0
        ):
            raise exceptions.TenantContextRequired()
        object.__setattr__(self, "_company_id", company_id)

    def __setattr__(self, name, value):
        raise AttributeError("TenantScope is immutable")

    @property
    def company_id(self) -> int:
        return self._company_id

    def __eq__(self, other) -> bool:
        return isinstance(other, TenantScope) and other.company_id == self.company_id

    def __hash__(self) -> int:
        return hash(("tenant", self._company_id))

    def __repr__(self) -> str:
        return f"TenantScope(company_id={self._company_id})"


class TenantRepository:
    """
    Persistence handle for one tenant-owned model.

    Args:
        session (Session): Active SQLAlchemy session.
        scope (TenantScope): Tenant every operation is restricted to.
        model: Declarative model carrying a `company_id` column.
    """

    def __init__(self, session: Session, scope: TenantScope, model):
        if not isinstance(scope, TenantScope):
            raise exceptions.TenantContextRequired()
        if "company_id" not in model.__table__.columns:
            raise TypeError(f"{model.__name__} is not a tenant-owned model")
        self.session = session
        self.scope = scope
        self.model = model

    @property
    def companyId(self) -> int:
        return self.scope.company_id

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------
    def query(self) -> Query:
        return self.session.query(self.model).filter(
            self.model.company_id == self.scope.company_id
        )

    def get(self, id: Any):
        if id is None:
            return None
        return self.query().filter(self.model.id == id).first()

    def getMany(self, ids: List[int]) -> list:
        if not ids:
            return []
        return self.query().filter(self.model.id.in_(ids)).all()

    def findOne(self, *criteria):
        return self.query().filter(*criteria).first()

    def find(self, *criteria, orderBy=None) -> list:
        query = self.query().filter(*criteria)
        if orderBy is not None:
            query = query.order_by(orderBy)
        return query.all()

    def exists(self, *criteria) -> bool:
        return self.query().filter(*criteria).first() is not None

    def count(self, *criteria) -> int:
        return (
            self.session.query(func.count(self.model.id))
            .filter(self.model.company_id == self.scope.company_id)
            .filter(*criteria)
            .scalar()
        )

    def paginate(self, query: Query, page: int, limit: int) -> Tuple[list, int]:
        """
        Return one page of `query` and the total count of matching rows.

        `query` must come from `self.query()` so it already carries the
        tenant filter. `limit` is capped at MAX_PAGE_SIZE.
        """
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        page = max(page, 1)
        total = query.order_by(None).count()
        items = query.offset((page - 1) * limit).limit(limit).all()
        return items, total

    def aggregate(self, *columns) -> Query:
        """
        Aggregation entry point. The tenant filter is always the first predicate;
        callers add grouping and further filters to the returned query.
        """
        return (
            self.session.query(*columns)
            .select_from(self.model)
            .filter(self.model.company_id == self.scope.company_id)
        )

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------
    def create(self, **data):
        companyId = data.pop("company_id", None)
        if companyId is not None and companyId != self.scope.company_id:
            raise exceptions.TenantContextRequired()
        obj = self.model(company_id=self.scope.company_id, **data)
        self.session.add(obj)
        self.session.flush()
        return obj

    def update(self, obj, **changes):
        self._owned(obj)
        changes.pop("company_id", None)
        for key, value in changes.items():
            setattr(obj, key, value)
        self.session.flush()
        return obj

    def delete(self, obj) -> None:
        self._owned(obj)
        self.session.delete(obj)
        self.session.flush()

    def conditionalUpdate(self, criteria: list, values: dict) -> int:
        """
        Atomic compare-and-set. Updates the tenant's rows matching every
        criterion in a single UPDATE statement and returns the affected row
        count; the precondition is evaluated by the database at write time.
        """
        values = {
            key: value for key, value in values.items() if key != "company_id"
        }
        return (
            self.query()
            .filter(*criteria)
            .update(values, synchronize_session="fetch")
        )

    def _owned(self, obj) -> None:
        if obj.company_id != self.scope.company_id:
            raise exceptions.TenantContextRequired()
