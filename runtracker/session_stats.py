"""
SessionStats: running statistics derived from a stream of GPS samples.

Single-writer: only update() and the duration helpers mutate it, and all
of them run synchronously on the event loop thread.
"""
from __future__ import annotations

import collections
import logging
import math
import time
from typing import Callable

from .const import (
    CALORIE_MODEL_DISTANCE,
    CALORIE_MODEL_MET,
    DEFAULT_WEIGHT_KG,
    MAX_DEVICE_SPEED_MPS,
    MAX_DURATION_SECONDS,
    MAX_ELEVATION_STEP_M,
    MAX_RUNNING_SPEED_KMH,
    MAX_STEP_DISTANCE_KM,
    MIN_RECORDED_SPEED_KMH,
    MIN_STEP_DISTANCE_KM,
    SAMPLE_HISTORY_SIZE,
    SPEED_HISTORY_SIZE,
)
from .geo_math import calories_from_distance, calories_from_met, distance_km, pace_from_speed
from .models import Coordinate, StatsSnapshot

_LOGGER = logging.getLogger(__name__)


class SessionStats:
    """
    Aggregates samples into distance, speed, elevation, duration, pace and
    calories.

    Duration is wall-clock based: it is measured from the start reference
    set by start() and shifted by shift_start() when a paused run resumes.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        calorie_model: str = CALORIE_MODEL_DISTANCE,
        weight_kg: float = DEFAULT_WEIGHT_KG,
    ) -> None:
        if calorie_model not in (CALORIE_MODEL_DISTANCE, CALORIE_MODEL_MET):
            raise ValueError(f"Unknown calorie model: {calorie_model}")
        self._clock = clock
        self._calorie_model = calorie_model
        self._weight_kg = weight_kg
        self.reset()

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Zero every figure and forget all history. Never called mid-run."""
        self.distance_km = 0.0
        self.current_speed_kmh = 0.0
        self.max_speed_kmh = 0.0
        self.avg_speed_kmh = 0.0
        self.elevation_gain_m = 0.0
        self.duration_seconds = 0
        self.pace = "0:00"
        self.calories = 0

        self._samples: collections.deque[Coordinate] = collections.deque(maxlen=SAMPLE_HISTORY_SIZE)
        self._speed_history: collections.deque[float] = collections.deque(maxlen=SPEED_HISTORY_SIZE)
        self._previous: Coordinate | None = None
        self._start_time: float | None = None

    def start(self, now: float | None = None) -> None:
        self._start_time = self._clock() if now is None else now

    def shift_start(self, seconds: float) -> None:
        """Move the start reference forward, e.g. by the length of a pause."""
        if self._start_time is not None:
            self._start_time += seconds

    def break_segment(self) -> None:
        """Forget the previous sample so the next one starts a fresh leg."""
        self._previous = None

    def refresh_duration(self) -> int:
        if self._start_time is not None:
            elapsed = max(0, math.floor(self._clock() - self._start_time))
            self.duration_seconds = min(elapsed, MAX_DURATION_SECONDS)
            if self._calorie_model == CALORIE_MODEL_MET:
                self._refresh_calories()
        return self.duration_seconds

    @property
    def samples(self) -> list[Coordinate]:
        return list(self._samples)

    # ------------------------------------------------------------------
    # Sample ingestion
    # ------------------------------------------------------------------

    def update(self, sample: Coordinate) -> bool:
        """Fold one sample into the statistics; False when it was dropped."""
        previous = self._previous
        if previous is not None and sample.timestamp_ms <= previous.timestamp_ms:
            _LOGGER.debug(
                "Dropping out-of-order sample (%s ms <= %s ms)",
                sample.timestamp_ms, previous.timestamp_ms,
            )
            return False

        self._samples.append(sample)
        speed = 0.0

        if previous is not None:
            delta = distance_km(previous, sample)
            if MIN_STEP_DISTANCE_KM <= delta <= MAX_STEP_DISTANCE_KM:
                self.distance_km += delta

            speed = self._instant_speed(previous, sample, delta)
            if speed > 0:
                if speed > MIN_RECORDED_SPEED_KMH:
                    self._speed_history.append(speed)
                    self.avg_speed_kmh = sum(self._speed_history) / len(self._speed_history)
                self.max_speed_kmh = max(self.max_speed_kmh, speed)

            if sample.altitude is not None and previous.altitude is not None:
                rise = sample.altitude - previous.altitude
                if 0 < rise < MAX_ELEVATION_STEP_M:
                    self.elevation_gain_m += rise

        self.refresh_duration()
        self.pace = pace_from_speed(self.avg_speed_kmh)
        self._refresh_calories()
        self.current_speed_kmh = speed
        self._previous = sample
        return True

    @staticmethod
    def _instant_speed(previous: Coordinate, sample: Coordinate, delta: float) -> float:
        """
        Speed for this step in km/h, or 0 when it is not believable.

        The device-reported speed wins when it is plausible; otherwise the
        speed is derived from the step distance and elapsed time.
        """
        if sample.speed_mps is not None and 0 < sample.speed_mps < MAX_DEVICE_SPEED_MPS:
            speed = sample.speed_mps * 3.6
        else:
            elapsed_hours = (sample.timestamp_ms - previous.timestamp_ms) / 1000 / 3600
            speed = delta / elapsed_hours if elapsed_hours > 0 else 0.0

        if speed >= MAX_RUNNING_SPEED_KMH:
            _LOGGER.debug("Rejecting unrealistic speed %.1f km/h", speed)
            return 0.0
        return speed

    def _refresh_calories(self) -> None:
        if self._calorie_model == CALORIE_MODEL_MET:
            self.calories = calories_from_met(
                self.distance_km, self.duration_seconds / 60, self._weight_kg
            )
        else:
            self.calories = calories_from_distance(self.distance_km)

    def snapshot(self) -> StatsSnapshot:
        return StatsSnapshot(
            distance_km=self.distance_km,
            current_speed_kmh=self.current_speed_kmh,
            max_speed_kmh=self.max_speed_kmh,
            avg_speed_kmh=self.avg_speed_kmh,
            elevation_gain_m=self.elevation_gain_m,
            duration_seconds=self.duration_seconds,
            pace=self.pace,
            calories=self.calories,
        )
