"""Exception types for FaceSift.

Only ``InputError`` (and unexpected faults) abort a detection request. The
remaining types describe failures that are recovered locally and surface as
fewer candidates, a missing pose, or a degraded health signal.
"""

from __future__ import annotations


class FaceSiftError(Exception):
    """Base exception for FaceSift errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InputError(FaceSiftError):
    """The input image is undecodable, invalid, or exceeds limits."""


class ImageFetchError(InputError):
    """The input image could not be downloaded."""

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"Could not fetch image from {url}: {reason}")
        self.url = url
        self.reason = reason


class StrategyFailure(FaceSiftError):
    """A single detection strategy errored; it contributes zero candidates."""

    def __init__(self, strategy: str, cause: BaseException) -> None:
        super().__init__(f"Strategy '{strategy}' failed: {cause}")
        self.strategy = strategy
        self.cause = cause


class ResourceExhaustion(FaceSiftError):
    """Reclamation could not bring runtime memory under the configured threshold."""

    def __init__(self, bytes_in_use: int, threshold: int) -> None:
        super().__init__(f"Runtime memory {bytes_in_use} bytes still above threshold {threshold} after reclamation")
        self.bytes_in_use = bytes_in_use
        self.threshold = threshold


class PoseDegenerate(FaceSiftError):
    """Landmark geometry cannot produce a pose estimate."""


class QueueClosed(FaceSiftError):
    """The detection queue is shut down and accepts no new work."""
