"""
Exception classes for partprune.

This module defines the exception hierarchy for partition pruning errors.
Transient unavailability (a lock that cannot be taken, no active transaction)
is never raised: callers receive an explicit "not found" result instead.
"""

from __future__ import annotations


# --- Top Level ---
class PartPruneError(Exception):
    """Base class for errors specific to partprune internal operation."""

    def suggest(self, *args: object) -> "PartPruneError":
        """
        Regenerate the exception with additional arguments.

        Parameters
        ----------
        *args : object
            Additional arguments to append to the exception.

        Returns
        -------
        PartPruneError
            A new exception of the same type with the additional arguments.
        """
        return self.__class__(*(self.args + args))


# --- Second Level ---
class ConfigurationError(PartPruneError):
    """Partitioning metadata is malformed: missing constraint, bad expression, etc."""


class InvalidRelationError(PartPruneError):
    """A relation is not partitioned, or its cache entry is not usable."""


class InternalError(PartPruneError):
    """Internal consistency of the caches has been violated."""


class LockNotHeldError(PartPruneError):
    """Release of a lock that the owner does not hold."""


# --- Third Level: ConfigurationErrors ---
class PartitionExpressionError(ConfigurationError):
    """Partitioning expression could not be parsed or analyzed."""


class WrongPartTypeError(ConfigurationError):
    """Unknown partitioning strategy marker."""


INIT_ERROR_HINT = "pruning has been disabled; fix the partition configuration and set config.enable = True"
