from __future__ import annotations


class GroupGuardError(Exception):
    """Base class for every failure surfaced by the data layer."""


class MalformedActorError(GroupGuardError, ValueError):
    """Actor columns do not hold exactly one identity."""


class UnknownCategoryError(GroupGuardError, KeyError):
    def __init__(self, category: object):
        super().__init__(category)
        self.category = category

    def __str__(self) -> str:
        return f"unknown config category: {self.category!r}"


class MissingGlobalDefaultError(GroupGuardError):
    """Neither a chat row nor the global row exists; the deployment is misconfigured."""


class ConstraintViolation(GroupGuardError):
    def __init__(self, message: str, *, constraint: str | None = None, rows: int | None = None):
        super().__init__(message)
        self.constraint = constraint
        self.rows = rows


class AmbiguousLegacyValueError(GroupGuardError, ValueError):
    def __init__(self, message: str, *, values: list | tuple | set | None = None):
        super().__init__(message)
        self.values = sorted(values, key=repr) if values else []


class UnknownCheckCodeError(AmbiguousLegacyValueError):
    """A legacy check name matched none of the known literals."""


class MigrationError(GroupGuardError):
    pass


class MigrationOrderError(MigrationError):
    """Applied history has gaps or versions this code base does not know."""


class IrreversibleMigrationError(MigrationError):
    pass


class LossyDowngradeRefused(MigrationError):
    def __init__(self, message: str, *, notes: list[str]):
        super().__init__(message)
        self.notes = notes


class LossyDowngradeWarning(UserWarning):
    """A down step ran that cannot restore every piece of legacy data."""


__all__ = [
    "AmbiguousLegacyValueError",
    "ConstraintViolation",
    "GroupGuardError",
    "IrreversibleMigrationError",
    "LossyDowngradeRefused",
    "LossyDowngradeWarning",
    "MalformedActorError",
    "MigrationError",
    "MigrationOrderError",
    "MissingGlobalDefaultError",
    "UnknownCategoryError",
    "UnknownCheckCodeError",
]
