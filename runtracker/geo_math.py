"""
Distance, speed, pace and calorie formulas.

Pure functions over coordinate pairs and scalars; no state, no I/O.
"""
from __future__ import annotations

import math
from typing import TYPE_CHECKING, Iterable

from .const import (
    CALORIES_PER_KM,
    DEFAULT_WEIGHT_KG,
    EARTH_RADIUS_KM,
    MET_BY_PACE,
    MET_FLOOR,
)

if TYPE_CHECKING:
    from .models import Coordinate


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance between two fixes (haversine)."""
    d_lat = math.radians(b.latitude - a.latitude)
    d_lon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.latitude))
        * math.cos(math.radians(b.latitude))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def speed_kmh(a: Coordinate, b: Coordinate) -> float:
    """Average speed from a to b; 0 when no time has elapsed."""
    elapsed_hours = (b.timestamp_ms - a.timestamp_ms) / 1000 / 3600
    if elapsed_hours <= 0:
        return 0.0
    return distance_km(a, b) / elapsed_hours


def pace_from_speed(speed: float) -> str:
    """Format the pace for a speed in km/h as M:SS per km."""
    if speed <= 0:
        return "0:00"
    pace_minutes = 60 / speed
    minutes = math.floor(pace_minutes)
    seconds = round((pace_minutes - minutes) * 60)
    if seconds == 60:
        minutes += 1
        seconds = 0
    return f"{minutes}:{seconds:02d}"


def calories_from_distance(distance: float) -> int:
    """Flat-rate estimate: CALORIES_PER_KM per kilometre."""
    return round(distance * CALORIES_PER_KM)


def calories_from_met(
    distance: float, duration_minutes: float, weight_kg: float = DEFAULT_WEIGHT_KG
) -> int:
    """
    MET-based estimate: MET × weight(kg) × time(h).

    The MET is picked from the pace (min/km). With no distance there is no
    pace and the slowest band (MET_FLOOR) applies, not the fastest.
    """
    pace = duration_minutes / distance if distance > 0 else math.inf
    met = MET_FLOOR
    for upper_pace, band_met in MET_BY_PACE:
        if pace < upper_pace:
            met = band_met
            break
    return round(met * weight_kg * (duration_minutes / 60))


def total_distance_km(coordinates: Iterable[Coordinate]) -> float:
    total = 0.0
    previous = None
    for coordinate in coordinates:
        if previous is not None:
            total += distance_km(previous, coordinate)
        previous = coordinate
    return total


def format_duration(seconds: int) -> str:
    """M:SS below an hour, "Hh Mmin" from an hour up (seconds dropped)."""
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes}min"
    return f"{minutes}:{secs:02d}"
