"""Exceptions raised by the scheduling engine and its stores."""


class SchedulingError(Exception):
    """Base class for scheduling errors."""


class InvalidRating(SchedulingError):
    """The rating is not one of Again, Hard, Good or Easy."""

    def __init__(self, value: object) -> None:
        super().__init__(f"Invalid rating {value!r}: expected Again, Hard, Good or Easy (1-4)")
        self.value = value


class InvalidConfig(SchedulingError):
    """A scheduling configuration failed validation."""

    field: str = ""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        if field is not None:
            self.field = field


class InvalidSteps(InvalidConfig):
    field = "learning_steps"


class InvalidWeights(InvalidConfig):
    field = "weights"


class InvalidRetention(InvalidConfig):
    field = "request_retention"


class InvalidInterval(InvalidConfig):
    field = "maximum_interval"


class ConcurrentModification(SchedulingError):
    """Another writer updated the same record first; retry the whole review."""

    def __init__(self, user_id: str, item_id: str) -> None:
        super().__init__(f"Review record for user {user_id!r}, item {item_id!r} was modified concurrently")
        self.user_id = user_id
        self.item_id = item_id


class PresetNotFound(SchedulingError):
    def __init__(self, preset_id: int) -> None:
        super().__init__(f"Scheduling preset {preset_id} not found")
        self.preset_id = preset_id


class PermissionDenied(SchedulingError):
    pass
