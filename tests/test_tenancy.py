"""
Unit tests for tenant scoping and the audit trail
"""

import pytest

from fleetcore.src import audit, exceptions
from fleetcore.src.db import AuditLog, Company, Vehicle
from fleetcore.src.enums import AuditAction, EntityType, VehicleStatus
from fleetcore.src.tenancy import TenantRepository, TenantScope


@pytest.fixture
def companies(session):
    first, second = Company(name="First", slug="first"), Company(name="Second", slug="second")
    session.add_all([first, second])
    session.flush()
    return TenantScope(first.id), TenantScope(second.id)


class TestTenantScope:
    """Scope construction"""

    @pytest.mark.parametrize("value", [None, 0, -3, "7", True, 1.5])
    def test_invalid_company_id(self, value):
        """Test a scope needs a positive integer company id"""
        with pytest.raises(exceptions.TenantContextRequired):
            TenantScope(value)

    def test_scope_is_immutable(self):
        """Test a scope cannot be re-pointed at another tenant"""
        scope = TenantScope(3)
        with pytest.raises(AttributeError):
            scope._company_id = 4
        assert scope.company_id == 3

    def test_equality(self):
        """Test scopes compare by company id"""
        assert TenantScope(3) == TenantScope(3)
        assert TenantScope(3) != TenantScope(4)

    def test_repository_requires_scope(self, session):
        """Test a repository cannot be built from a bare id"""
        with pytest.raises(exceptions.TenantContextRequired):
            TenantRepository(session, 3, Vehicle)

    def test_repository_requires_tenant_model(self, session):
        """Test the company table itself has no tenant repository"""
        with pytest.raises(TypeError):
            TenantRepository(session, TenantScope(1), Company)


class TestTenantRepository:
    """Every read is filtered and every write is stamped"""

    def test_create_stamps_company(self, session, companies):
        """Test created rows belong to the scope's company"""
        first, _ = companies
        vehicle = TenantRepository(session, first, Vehicle).create(
            vehicle_number="KL-01-1", capacity_kg=500
        )
        assert vehicle.company_id == first.company_id

    def test_create_rejects_foreign_company(self, session, companies):
        """Test a conflicting company id in the data is refused"""
        first, second = companies
        with pytest.raises(exceptions.TenantContextRequired):
            TenantRepository(session, first, Vehicle).create(
                vehicle_number="KL-01-1", capacity_kg=500, company_id=second.company_id
            )

    def test_reads_are_isolated(self, session, companies):
        """Test a tenant never sees another tenant's rows"""
        first, second = companies
        own = TenantRepository(session, first, Vehicle).create(
            vehicle_number="KL-01-1", capacity_kg=500
        )
        foreign = TenantRepository(session, second, Vehicle)
        assert foreign.get(own.id) is None
        assert foreign.getMany([own.id]) == []
        assert foreign.count() == 0
        assert not foreign.exists(Vehicle.id == own.id)
        assert foreign.aggregate(Vehicle.id).all() == []

    def test_update_of_foreign_row(self, session, companies):
        """Test updating another tenant's row fails"""
        first, second = companies
        own = TenantRepository(session, first, Vehicle).create(
            vehicle_number="KL-01-1", capacity_kg=500
        )
        with pytest.raises(exceptions.TenantContextRequired):
            TenantRepository(session, second, Vehicle).update(own, capacity_kg=900)
        with pytest.raises(exceptions.TenantContextRequired):
            TenantRepository(session, second, Vehicle).delete(own)

    def test_update_keeps_company(self, session, companies):
        """Test the owning company cannot be changed through an update"""
        first, second = companies
        vehicles = TenantRepository(session, first, Vehicle)
        vehicle = vehicles.create(vehicle_number="KL-01-1", capacity_kg=500)
        vehicles.update(vehicle, capacity_kg=900, company_id=second.company_id)
        assert vehicle.company_id == first.company_id
        assert vehicle.capacity_kg == 900

    def test_conditional_update(self, session, companies):
        """Test the compare-and-set only touches matching rows of the tenant"""
        first, second = companies
        vehicles = TenantRepository(session, first, Vehicle)
        vehicle = vehicles.create(vehicle_number="KL-01-1", capacity_kg=500)
        TenantRepository(session, second, Vehicle).create(
            vehicle_number="KL-01-1", capacity_kg=500
        )

        criteria = [Vehicle.status == VehicleStatus.AVAILABLE]
        values = {Vehicle.status.key: VehicleStatus.MAINTENANCE}
        assert vehicles.conditionalUpdate(criteria, values) == 1
        assert vehicles.conditionalUpdate(criteria, values) == 0
        assert vehicle.status == VehicleStatus.MAINTENANCE
        assert (
            TenantRepository(session, second, Vehicle).count(
                Vehicle.status == VehicleStatus.AVAILABLE
            )
            == 1
        )

    def test_paginate(self, session, companies):
        """Test pagination returns one page and the full count"""
        first, _ = companies
        vehicles = TenantRepository(session, first, Vehicle)
        for index in range(5):
            vehicles.create(vehicle_number=f"KL-01-{index}", capacity_kg=500)
        items, total = vehicles.paginate(vehicles.query().order_by(Vehicle.id), 2, 2)
        assert total == 5
        assert [item.vehicle_number for item in items] == ["KL-01-2", "KL-01-3"]


class TestAudit:
    """Audit records"""

    def test_record_requires_scope(self, session):
        """Test an audit entry cannot be written without a tenant"""
        with pytest.raises(exceptions.TenantContextRequired):
            audit.record(session, None, AuditAction.VEHICLE_CREATION, EntityType.VEHICLE, 1)

    def test_entity_history_is_scoped(self, session, companies):
        """Test the history of an entity only lists the tenant's own entries"""
        first, second = companies
        audit.record(session, first, AuditAction.VEHICLE_CREATION, EntityType.VEHICLE, 1)
        audit.record(session, first, AuditAction.VEHICLE_UPDATE, EntityType.VEHICLE, 1)
        audit.record(session, second, AuditAction.VEHICLE_CREATION, EntityType.VEHICLE, 1)

        history = audit.entityHistory(session, first, EntityType.VEHICLE, 1)
        assert [entry.action for entry in history] == [
            AuditAction.VEHICLE_UPDATE,
            AuditAction.VEHICLE_CREATION,
        ]
        assert all(isinstance(entry, AuditLog) for entry in history)
        assert len(audit.entityHistory(session, second, EntityType.VEHICLE, 1)) == 1
