"""
Exception types raised by the evolutionary core.
"""


class NeatWalkerError(Exception):
    """Base class for errors surfaced to callers of the core."""


class InputArityMismatch(NeatWalkerError, ValueError):
    """Network activated with an input vector of the wrong length."""

    def __init__(self, expected: int, got: int):
        super().__init__(f"Expected {expected} inputs, got {got}")
        self.expected = expected
        self.got = got


class ConfigurationOutOfRange(NeatWalkerError, ValueError):
    """A configuration value is outside its documented range."""

    def __init__(self, name: str, value, requirement: str):
        super().__init__(f"{name}={value!r} is out of range: {requirement}")
        self.name = name
        self.value = value
        self.requirement = requirement
