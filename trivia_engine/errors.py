"""
Exception hierarchy for the settlement engine.

Business-rule rejections (expired session, risky play, ineligible claim) are
returned as typed results and never raised. These exceptions cover caller
contract violations, misconfiguration and corrupt input data.
"""


class EngineError(Exception):
    """Base class for every error raised by trivia_engine."""


class ContractViolation(EngineError, ValueError):
    """A caller passed malformed or incomplete data."""


class ConfigurationError(EngineError):
    """The deployment configuration is missing or inconsistent."""


class UnknownModeError(ConfigurationError):
    """A mode type has no entry in the configuration."""

    def __init__(self, mode):
        self.mode = mode
        super().__init__(f"unknown mode: {mode!r}")


class DataIntegrityError(EngineError):
    """A stored record holds a value that cannot be right, e.g. a future timestamp."""


class SettlementError(EngineError):
    """A period cannot be settled in its current state."""
