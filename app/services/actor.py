from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, passed explicitly into every coordinator call."""

    user_id: str
    role: str                       # passenger | driver
    driver_id: str | None = None    # resolved Driver.id when role == "driver"

    @property
    def is_passenger(self) -> bool:
        return self.role == "passenger"

    @property
    def is_driver(self) -> bool:
        return self.role == "driver"
