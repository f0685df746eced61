from enum import IntEnum


class AppID(IntEnum):
    PLATFORM = 1
    FLEET = 2


class OrderIn(IntEnum):
    ASC = 1
    DESC = 2


class PlanType(IntEnum):
    FREE = 1
    STARTER = 2
    PROFESSIONAL = 3
    ENTERPRISE = 4


class CompanyStatus(IntEnum):
    ACTIVE = 1
    SUSPENDED = 2
    CANCELLED = 3


class BillingCycle(IntEnum):
    MONTHLY = 1
    YEARLY = 2


class PlatformRole(IntEnum):
    USER = 1
    PLATFORM_ADMIN = 2
    PLATFORM_SUPPORT = 3


class CompanyRole(IntEnum):
    OWNER = 1
    ADMIN = 2
    MANAGER = 3
    DRIVER = 4
    USER = 5


class VehicleType(IntEnum):
    OTHER = 1
    TRUCK = 2
    MINI_TRUCK = 3
    TRAILER = 4
    VAN = 5


class VehicleStatus(IntEnum):
    AVAILABLE = 1
    IN_TRIP = 2
    MAINTENANCE = 3


class DriverStatus(IntEnum):
    INACTIVE = 1
    ACTIVE = 2
    ON_TRIP = 3


class ClientType(IntEnum):
    CORPORATE = 1
    INDIVIDUAL = 2


class TripStatus(IntEnum):
    SCHEDULED = 1
    STARTED = 2
    IN_TRANSIT = 3
    COMPLETED = 4
    CANCELLED = 5


class ProgressStatus(IntEnum):
    STARTED = 1
    IN_TRANSIT = 2
    DELAYED = 3
    ARRIVED = 4
    COMPLETED = 5


class ServiceType(IntEnum):
    OTHER = 1
    OIL_CHANGE = 2
    ENGINE_CHECK = 3
    TIRE_REPLACEMENT = 4
    BRAKE_SERVICE = 5
    ACCIDENT_REPAIR = 6
    GENERAL_SERVICE = 7
    POLLUTION_CHECK = 8
    INSURANCE_RENEWAL = 9


class AuditAction(IntEnum):
    USER_CREATION = 1
    USER_UPDATE = 2
    USER_DELETION = 3
    DRIVER_CREATION = 4
    DRIVER_UPDATE = 5
    DRIVER_DELETION = 6
    DRIVER_ASSIGNMENT = 7
    VEHICLE_CREATION = 8
    VEHICLE_UPDATE = 9
    VEHICLE_DELETION = 10
    VEHICLE_STATUS_CHANGE = 11
    TRIP_CREATION = 12
    TRIP_UPDATE = 13
    TRIP_DELETION = 14
    TRIP_COMPLETION = 15
    ROUTE_CREATION = 16
    ROUTE_UPDATE = 17
    ROUTE_DELETION = 18
    CLIENT_CREATION = 19
    CLIENT_UPDATE = 20
    CLIENT_DELETION = 21
    MAINTENANCE_CREATION = 22
    MAINTENANCE_UPDATE = 23
    MAINTENANCE_DELETION = 24
    COMPANY_PLAN_CHANGE = 25
    COMPANY_STATUS_CHANGE = 26
    COMPANY_UPDATE = 27


class EntityType(IntEnum):
    USER = 1
    DRIVER = 2
    VEHICLE = 3
    TRIP = 4
    MAINTENANCE = 5
    ROUTE = 6
    CLIENT = 7
    COMPANY = 8


class Feature(IntEnum):
    ANALYTICS = 1
    API_ACCESS = 2
    CUSTOM_ROLES = 3
    ADVANCED_REPORTING = 4
    WEBHOOKS = 5
    PRIORITY_SUPPORT = 6


class QuotaResource(IntEnum):
    VEHICLE = 1
    DRIVER = 2
    USER = 3
    TRIP = 4
    CLIENT = 5
