from typing import Protocol


class CameraUnavailable(Exception):
    """The camera could not be acquired (denied, missing or busy)."""


class CameraDevice(Protocol):
    def acquire(self) -> None:
        """Start the video stream; raise CameraUnavailable on failure."""

    def release(self) -> None:
        """Stop every track of the stream."""


class NoCamera:
    """Stand-in for hosts without a camera; acquiring always fails."""

    def acquire(self) -> None:
        raise CameraUnavailable("No camera device configured")

    def release(self) -> None:
        return None
