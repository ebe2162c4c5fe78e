"""
sim/errors.py
=============
Exceptions raised by the intersection core.

Empty queues are not errors: peek / dequeue return ``None``.
"""


class InvalidDirection(AssertionError):
    """A pair mapping was requested for something that is not a :class:`Direction`.

    Unreachable with the closed four-value enum; treated as a programmer
    error.  The ticker halts and re-raises it instead of ticking on.
    """


class MisconfiguredDuration(ValueError):
    """A timing constant is zero, negative or not a number."""

    def __init__(self, field_name: str, value: object) -> None:
        super().__init__(
            f"{field_name} must be a positive duration in seconds, got {value!r}"
        )
        self.field_name = field_name
        self.value = value
