"""
Engine error taxonomy.

Every failure path raises one of these instead of returning a default.
``retryable`` tells the calling layer whether an automatic retry (with
backoff or a wider search radius) makes sense.
"""


class EngineError(Exception):
    retryable = False


class InvalidGeometry(EngineError):
    """Zone shape rejected at construction (radius <= 0, < 3 vertices, self-intersecting)."""


class InvalidInput(EngineError):
    """Negative / NaN trip parameters, rejected before any computation."""


class InvalidFareRule(EngineError):
    """Fare rule violates its invariants (negative rate, unordered slabs)."""


class NoFareConfigured(EngineError):
    def __init__(self, booking_type, vehicle_type):
        self.booking_type = booking_type
        self.vehicle_type = vehicle_type
        super().__init__(
            f"No fare rule configured for {_value(booking_type)}/{_value(vehicle_type)}"
        )


class OutOfServiceArea(EngineError):
    """Point lies outside every active zone."""


class NoDriversAvailable(EngineError):
    retryable = True


class AlreadyAssigned(EngineError):
    """Claim lost: the driver or the ride was taken in the meantime."""

    retryable = True

    def __init__(self, driver_id: str, ride_id: str):
        self.driver_id = driver_id
        self.ride_id = ride_id
        super().__init__(f"Driver {driver_id} could not be claimed for ride {ride_id}")


class InvalidStateTransition(EngineError):
    """Raised when a ride or driver status change violates its state machine."""


class UnknownDriver(EngineError):
    def __init__(self, driver_id: str):
        self.driver_id = driver_id
        super().__init__(f"Unknown driver {driver_id}")


class UnknownZone(EngineError):
    def __init__(self, zone_id: str):
        self.zone_id = zone_id
        super().__init__(f"Unknown zone {zone_id}")


def _value(member) -> str:
    return getattr(member, "value", str(member))
