"""Domain enumerations and state-transition rules."""

import enum


class BookingType(str, enum.Enum):
    REGULAR = "regular"
    RENTAL = "rental"
    OUTSTATION = "outstation"
    OUTSTATION_SLAB = "outstation_slab"
    AIRPORT = "airport"


class VehicleType(str, enum.Enum):
    HATCHBACK = "hatchback"
    HATCHBACK_AC = "hatchback_ac"
    SEDAN = "sedan"
    SEDAN_AC = "sedan_ac"
    SUV = "suv"
    SUV_AC = "suv_ac"


class PricingModel(str, enum.Enum):
    METERED = "metered"
    HOURLY = "hourly"
    SLAB = "slab"


class PlatformFeeKind(str, enum.Enum):
    FIXED = "fixed"
    PERCENT = "percent"


class RideStatus(str, enum.Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    DRIVER_ARRIVED = "driver_arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.REQUESTED: {RideStatus.ACCEPTED, RideStatus.CANCELLED},
    RideStatus.ACCEPTED: {RideStatus.DRIVER_ARRIVED, RideStatus.CANCELLED},
    RideStatus.DRIVER_ARRIVED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

# A driver holding a ride in one of these statuses is not dispatchable
ACTIVE_RIDE_STATUSES: frozenset[RideStatus] = frozenset(
    {RideStatus.ACCEPTED, RideStatus.DRIVER_ARRIVED, RideStatus.IN_PROGRESS}
)


class DriverStatus(str, enum.Enum):
    OFFLINE = "offline"
    ONLINE = "online"
    BUSY = "busy"
    SUSPENDED = "suspended"


# Driver-initiated moves only.  SUSPENDED is entered and left by admins.
DRIVER_TRANSITIONS: dict[DriverStatus, set[DriverStatus]] = {
    DriverStatus.OFFLINE: {DriverStatus.ONLINE},
    DriverStatus.ONLINE: {DriverStatus.OFFLINE, DriverStatus.BUSY},
    DriverStatus.BUSY: {DriverStatus.ONLINE},
    DriverStatus.SUSPENDED: set(),
}


class DispatchStatus(str, enum.Enum):
    OK = "OK"
    OUT_OF_SERVICE_AREA = "OutOfServiceArea"
    NO_DRIVERS_AVAILABLE = "NoDriversAvailable"
