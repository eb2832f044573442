"""
Manual Override Controller.

Holds the history of operator controls and answers which one is
authoritative at a given instant. Creating a control supersedes every
earlier one immediately, whatever its remaining duration; superseded and
expired controls stay in history (retention belongs to the store).

Input validation for new controls lives here too, so every entry point
(HTTP, CLI, tests) rejects the same inputs before they reach the engine.
"""

from typing import List, Optional

from ..config.config import ManualControlConfig
from ..config.constants import MANUAL_DIRECTIONS
from .types import Direction, ManualControl


class ManualControlValidationError(ValueError):
    """Raised when a manual control request is out of bounds."""


def validate_manual_control(
    direction: str,
    speed: float,
    intensity: float,
    duration_seconds: int,
    limits: ManualControlConfig,
) -> Direction:
    """
    Validate a manual control request.

    Args:
        direction: "up", "down" or "neutral"
        speed: Fraction of price per step, in [0, limits.max_speed]
        intensity: Multiplier, in [0, limits.max_intensity]
        duration_seconds: Lifetime, in (0, limits.max_duration]
        limits: Configured bounds

    Returns:
        Parsed Direction

    Raises:
        ManualControlValidationError: If any field is invalid
    """
    if direction not in MANUAL_DIRECTIONS:
        raise ManualControlValidationError(
            f'Direction must be "up", "down", or "neutral", got {direction!r}'
        )
    if not 0 <= speed <= limits.max_speed:
        raise ManualControlValidationError(
            f"Speed must be between 0 and {limits.max_speed}, got {speed}"
        )
    if not 0 <= intensity <= limits.max_intensity:
        raise ManualControlValidationError(
            f"Intensity must be between 0 and {limits.max_intensity}, got {intensity}"
        )
    if int(duration_seconds) != duration_seconds or not 0 < duration_seconds <= limits.max_duration:
        raise ManualControlValidationError(
            f"Duration must be a whole number of seconds in (0, {limits.max_duration}], got {duration_seconds}"
        )
    return Direction(direction)


class ManualOverrideController:
    """
    Tracks operator controls; at most one is authoritative at any instant.

    Usage:
        controller = ManualOverrideController()
        controller.create(Direction.UP, speed=0.02, intensity=1.5,
                          duration_seconds=60, now_ms=now)
        control = controller.get_active_control(now_ms)
    """

    def __init__(self, max_history: int = 500):
        self._history: List[ManualControl] = []
        self._max_history = max_history
        self._next_id = 1

    def create(
        self,
        direction: Direction,
        speed: float,
        intensity: float,
        duration_seconds: int,
        now_ms: int,
    ) -> ManualControl:
        """Create a control that supersedes all earlier ones."""
        control = ManualControl(
            direction=direction,
            speed=speed,
            intensity=intensity,
            start_time=now_ms,
            duration_seconds=int(duration_seconds),
            id=self._next_id,
        )
        self._next_id += 1
        self.adopt(control)
        return control

    def adopt(self, control: ManualControl) -> None:
        """
        Install an already-built control (e.g. restored from the store)
        as the newest one.
        """
        for previous in self._history:
            previous.is_active = False
        if control.id is not None:
            self.reserve_ids_through(control.id)
        self._history.append(control)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

    def reserve_ids_through(self, last_id: int) -> None:
        """Make sure new controls are numbered after an id already in use."""
        if last_id >= self._next_id:
            self._next_id = last_id + 1

    def get_active_control(self, now_ms: int) -> Optional[ManualControl]:
        """Most recently created control whose window contains now_ms."""
        for control in reversed(self._history):
            if control.is_active_at(now_ms):
                return control
        return None

    def cancel_active(self, now_ms: int) -> Optional[ManualControl]:
        """Deactivate the authoritative control, returning it."""
        control = self.get_active_control(now_ms)
        if control is not None:
            control.is_active = False
        return control

    @property
    def history(self) -> List[ManualControl]:
        return list(self._history)
