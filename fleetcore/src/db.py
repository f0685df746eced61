from sqlalchemy import (
    JSON,
    TEXT,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    func,
)
from sqlalchemy.orm import declarative_base, sessionmaker

from fleetcore.src.constants import DATABASE_URL
from fleetcore.src.enums import (
    BillingCycle,
    ClientType,
    CompanyRole,
    CompanyStatus,
    DriverStatus,
    PlanType,
    PlatformRole,
    ProgressStatus,
    ServiceType,
    TripStatus,
    VehicleStatus,
    VehicleType,
)


# Global DBMS variables
engine = create_engine(url=DATABASE_URL, echo=False)
sessionMaker = sessionmaker(bind=engine, expire_on_commit=False)
ORMbase = declarative_base()


# ----------------------------------- Tenant DB Models ----------------------------------------#
class Company(ORMbase):
    """
    Represents a tenant of the platform. Every other business record is owned
    by exactly one company and is only visible through that company's scope.

    Columns:
        id (Integer):
            Primary key. Unique identifier for the company.

        name (String(100)):
            Display name of the company.
            Must be non-null.

        slug (String(64)):
            Human-readable identifier used at login to resolve the tenant.
            Globally unique, lower case, non-null.

        owner_id (Integer):
            Identifier of the owner account.
            Set in the same transaction that creates the owner during signup.

        plan (Integer):
            Subscription tier (FREE, STARTER, PROFESSIONAL, ENTERPRISE).
            Defaults to `PlanType.FREE`.

        status (Integer):
            Subscription status (ACTIVE, SUSPENDED, CANCELLED).
            Anything other than ACTIVE blocks creation of child resources.

        subscription_id (String(64)):
            Identifier at the external billing provider, if any.

        subscription_started_on, subscription_ends_on, trial_ends_on (DateTime):
            Subscription window and trial expiry.

        plan_changed_on (DateTime):
            Timestamp of the last plan change.

        billing_email (String(254)):
            Address receiving invoices and maintenance reminders.

        billing_cycle (Integer):
            MONTHLY or YEARLY.

        vehicles_created_this_month, drivers_created_this_month,
        users_created_this_month, trips_completed_this_month (Integer):
            Monthly usage counters, reset by the daily aggregation job.

        usage_reset_on (DateTime):
            When the monthly counters were last reset.

        suspension_reason (TEXT), suspended_on (DateTime):
            Populated while the company is suspended.

        updated_on (DateTime):
            Timestamp automatically updated whenever the record is modified.

        created_on (DateTime):
            Timestamp indicating when the company was created.
    """

    __tablename__ = "company"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    slug = Column(String(64), nullable=False, unique=True, index=True)
    owner_id = Column(Integer)
    plan = Column(Integer, nullable=False, default=PlanType.FREE)
    status = Column(Integer, nullable=False, default=CompanyStatus.ACTIVE)
    subscription_id = Column(String(64))
    subscription_started_on = Column(DateTime(timezone=True))
    subscription_ends_on = Column(DateTime(timezone=True))
    trial_ends_on = Column(DateTime(timezone=True))
    plan_changed_on = Column(DateTime(timezone=True))
    billing_email = Column(String(254))
    billing_cycle = Column(Integer, nullable=False, default=BillingCycle.MONTHLY)
    # Usage counters
    vehicles_created_this_month = Column(Integer, nullable=False, default=0)
    drivers_created_this_month = Column(Integer, nullable=False, default=0)
    users_created_this_month = Column(Integer, nullable=False, default=0)
    trips_completed_this_month = Column(Integer, nullable=False, default=0)
    usage_reset_on = Column(DateTime(timezone=True), default=func.now())
    # Suspension
    suspension_reason = Column(TEXT)
    suspended_on = Column(DateTime(timezone=True))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class User(ORMbase):
    """
    Represents a login account inside a company.

    Email addresses are unique per company only, so the same address can
    belong to different tenants.

    Columns:
        company_id (Integer):
            Owning company. Deletion of the company cascades to its accounts.

        email (String(254)):
            Lower-cased login email. Unique together with `company_id`.

        password (String(256)):
            Argon2 hash of the password.

        platform_role (Integer):
            Platform-wide role (USER, PLATFORM_ADMIN, PLATFORM_SUPPORT).

        company_role (Integer):
            Role inside the company (OWNER, ADMIN, MANAGER, DRIVER, USER).

        is_active (Boolean):
            Soft-disable flag. Inactive accounts cannot authenticate.

        refresh_token_id (String(64)):
            Identifier of the single valid refresh token. Cleared on logout.
    """

    __tablename__ = "account"
    __table_args__ = (UniqueConstraint("company_id", "email"),)

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(100), nullable=False)
    email = Column(String(254), nullable=False, index=True)
    password = Column(String(256), nullable=False)
    platform_role = Column(Integer, nullable=False, default=PlatformRole.USER)
    company_role = Column(Integer, nullable=False, default=CompanyRole.USER)
    is_active = Column(Boolean, nullable=False, default=True)
    refresh_token_id = Column(String(64))
    last_login_on = Column(DateTime(timezone=True))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Vehicle(ORMbase):
    """
    Represents a vehicle in a company's fleet.

    Columns:
        vehicle_number (String(16)):
            Upper-case registration number. Unique per company.

        status (Integer):
            AVAILABLE, IN_TRIP or MAINTENANCE.
            IN_TRIP always comes with `current_trip_id`; MAINTENANCE never does.

        current_trip_id (Integer):
            Trip holding the vehicle, written only by the trip engine.
    """

    __tablename__ = "vehicle"
    __table_args__ = (
        UniqueConstraint("company_id", "vehicle_number"),
        Index("ix_vehicle_company_status", "company_id", "status"),
        Index("ix_vehicle_company_created", "company_id", "created_on"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vehicle_number = Column(String(16), nullable=False, index=True)
    model = Column(String(64))
    type = Column(Integer, nullable=False, default=VehicleType.TRUCK)
    capacity_kg = Column(Integer, nullable=False)
    status = Column(Integer, nullable=False, default=VehicleStatus.AVAILABLE)
    insurance_policy = Column(String(64))
    insurance_expiry = Column(DateTime(timezone=True))
    current_trip_id = Column(Integer, ForeignKey("trip.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class DriverProfile(ORMbase):
    """
    Driving details of an account with the DRIVER role, linked one to one.

    Columns:
        user_id (Integer):
            The driver's account. Unique.

        license_number (String(32)):
            Unique per company.

        status (Integer):
            INACTIVE, ACTIVE or ON_TRIP. ON_TRIP always comes with `active_trip_id`.

        latitude, longitude (Float), location_updated_on (DateTime):
            Last reported position.
    """

    __tablename__ = "driver_profile"
    __table_args__ = (
        UniqueConstraint("company_id", "license_number"),
        Index("ix_driver_company_status", "company_id", "status"),
        Index("ix_driver_company_created", "company_id", "created_on"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(
        Integer,
        ForeignKey("account.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    license_number = Column(String(32), nullable=False)
    phone = Column(String(16), nullable=False)
    address = Column(String(256))
    experience_years = Column(Integer, nullable=False, default=0)
    status = Column(Integer, nullable=False, default=DriverStatus.INACTIVE)
    assigned_vehicle_id = Column(
        Integer, ForeignKey("vehicle.id", ondelete="SET NULL")
    )
    active_trip_id = Column(Integer, ForeignKey("trip.id", ondelete="SET NULL"))
    latitude = Column(Float)
    longitude = Column(Float)
    location_updated_on = Column(DateTime(timezone=True))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Route(ORMbase):
    """
    Source, destination and intermediate stops of a haul.

    `source` and `destination` are `{name, lat, lng}` objects, `waypoints` a list
    of `{name, lat, lng, stop_duration_min}` and `tolls` a list of `{name, cost}`.
    A route referenced by a trip that is not cancelled must not change.
    """

    __tablename__ = "route"
    __table_args__ = (
        UniqueConstraint("company_id", "name"),
        Index("ix_route_company_created", "company_id", "created_on"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(128), nullable=False)
    source = Column(JSON, nullable=False)
    destination = Column(JSON, nullable=False)
    waypoints = Column(JSON, nullable=False, default=list)
    distance_km = Column(Float, nullable=False)
    estimated_duration_hr = Column(Float, nullable=False)
    tolls = Column(JSON, nullable=False, default=list)
    preferred_vehicle_types = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Client(ORMbase):
    __tablename__ = "client"
    __table_args__ = (
        UniqueConstraint("company_id", "name"),
        UniqueConstraint("company_id", "gst_number"),
        Index("ix_client_company_created", "company_id", "created_on"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name = Column(String(128), nullable=False)
    type = Column(Integer, nullable=False, default=ClientType.CORPORATE)
    contact_person = Column(String(100))
    phone = Column(String(16))
    email = Column(String(254))
    address = Column(String(512))
    gst_number = Column(String(15))
    notes = Column(TEXT)
    is_active = Column(Boolean, nullable=False, default=True)
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class Trip(ORMbase):
    """
    The central coordination record between route, client, vehicles and drivers.

    Columns:
        trip_code (String(32)):
            Upper-case code. Unique per company.

        vehicle_ids, driver_ids (JSON):
            Lists of vehicle and driver profile identifiers reserved by the trip.
            Always reassigned as a whole, never mutated in place.

        status (Integer):
            SCHEDULED -> STARTED -> IN_TRANSIT -> COMPLETED, with CANCELLED
            reachable from every non-terminal state.

        start_time, end_time (DateTime):
            Stamped when the trip starts and when it finishes.
    """

    __tablename__ = "trip"
    __table_args__ = (
        UniqueConstraint("company_id", "trip_code"),
        Index("ix_trip_company_status", "company_id", "status"),
        Index("ix_trip_company_created", "company_id", "created_on"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    trip_code = Column(String(32), nullable=False, index=True)
    route_id = Column(Integer, ForeignKey("route.id", ondelete="SET NULL"))
    client_id = Column(Integer, ForeignKey("client.id", ondelete="SET NULL"))
    vehicle_ids = Column(JSON, nullable=False, default=list)
    driver_ids = Column(JSON, nullable=False, default=list)
    goods_info = Column(String(512))
    load_weight_kg = Column(Float)
    trip_cost = Column(Float)
    status = Column(Integer, nullable=False, default=TripStatus.SCHEDULED)
    start_time = Column(DateTime(timezone=True))
    end_time = Column(DateTime(timezone=True))
    remarks = Column(TEXT)
    created_by = Column(Integer, ForeignKey("account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class TripProgress(ORMbase):
    """
    Append-only progress log entry of a trip. Entries are never updated.
    """

    __tablename__ = "trip_progress"

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    trip_id = Column(
        Integer,
        ForeignKey("trip.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    latitude = Column(Float)
    longitude = Column(Float)
    note = Column(String(512))
    status = Column(Integer, nullable=False, default=ProgressStatus.IN_TRANSIT)
    recorded_by = Column(Integer, ForeignKey("account.id", ondelete="SET NULL"))
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class MaintenanceLog(ORMbase):
    __tablename__ = "maintenance_log"
    __table_args__ = (
        Index("ix_maintenance_company_created", "company_id", "created_on"),
        Index("ix_maintenance_company_due", "company_id", "next_due_date"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vehicle_id = Column(
        Integer,
        ForeignKey("vehicle.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_type = Column(Integer, nullable=False, default=ServiceType.GENERAL_SERVICE)
    description = Column(String(1024))
    service_date = Column(DateTime(timezone=True), nullable=False)
    cost = Column(Float, nullable=False, default=0)
    next_due_date = Column(DateTime(timezone=True))
    odometer_km = Column(Integer)
    vendor_name = Column(String(128))
    vendor_contact = Column(String(64))
    vendor_address = Column(String(512))
    remarks = Column(TEXT)
    reminder_sent_on = Column(DateTime(timezone=True))
    created_by = Column(Integer, ForeignKey("account.id", ondelete="SET NULL"))
    # Metadata
    updated_on = Column(DateTime(timezone=True), onupdate=func.now())
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())


class AuditLog(ORMbase):
    """
    Append-only record of a mutating action. Business logic never updates or
    deletes these rows.

    Columns:
        user_id (Integer):
            Acting account. Set to NULL if the account is later deleted,
            the entry itself is kept.

        old_value, new_value (JSON):
            Snapshots before and after the change.

        details (JSON):
            Free-form context of the action.
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        Index("ix_audit_company_created", "company_id", "created_on"),
        Index("ix_audit_company_entity", "company_id", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True)
    company_id = Column(
        Integer,
        ForeignKey("company.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(Integer, ForeignKey("account.id", ondelete="SET NULL"))
    action = Column(Integer, nullable=False)
    entity_type = Column(Integer, nullable=False)
    entity_id = Column(Integer, nullable=False)
    old_value = Column(JSON)
    new_value = Column(JSON)
    details = Column(JSON)
    ip_address = Column(String(64))
    user_agent = Column(String(512))
    created_on = Column(DateTime(timezone=True), nullable=False, default=func.now())
