"""
Great-circle helpers.

Scalar functions are used for single pairs; the ``*_many`` variants evaluate
one origin against arrays of destinations and back the spatial filter's full
scan.
"""

from __future__ import annotations

import math

import numpy as np

EARTH_RADIUS_KM = 6371.0


def normalize_degrees(angle: float) -> float:
    """Wrap an angle into [0, 360)."""
    wrapped = math.fmod(angle, 360.0)
    if wrapped < 0:
        wrapped += 360.0
    # fmod of a tiny negative value can round up to exactly 360
    if wrapped >= 360.0:
        wrapped = 0.0
    return wrapped


def circular_difference_deg(a: float, b: float) -> float:
    """Smallest absolute angle between two compass directions, in [0, 180]."""
    diff = abs(normalize_degrees(a) - normalize_degrees(b))
    return 360.0 - diff if diff > 180.0 else diff


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    a = min(1.0, max(0.0, a))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def initial_bearing_deg(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Forward azimuth from point 1 to point 2, clockwise from north."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlmb = math.radians(lon2 - lon1)
    y = math.sin(dlmb) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlmb)
    if x == 0.0 and y == 0.0:
        return 0.0
    return normalize_degrees(math.degrees(math.atan2(y, x)))


def haversine_km_many(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    phi1 = np.radians(lat)
    phi2 = np.radians(lats)
    dphi = np.radians(lats - lat)
    dlmb = np.radians(lons - lon)
    a = np.sin(dphi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(dlmb / 2) ** 2
    a = np.clip(a, 0.0, 1.0)
    return 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def initial_bearing_deg_many(lat: float, lon: float, lats: np.ndarray, lons: np.ndarray) -> np.ndarray:
    phi1 = np.radians(lat)
    phi2 = np.radians(lats)
    dlmb = np.radians(lons - lon)
    y = np.sin(dlmb) * np.cos(phi2)
    x = np.cos(phi1) * np.sin(phi2) - np.sin(phi1) * np.cos(phi2) * np.cos(dlmb)
    bearings = np.mod(np.degrees(np.arctan2(y, x)) + 360.0, 360.0)
    # mod can return exactly 360.0 for -0.0 style inputs
    bearings[bearings >= 360.0] = 0.0
    return bearings


def circular_difference_many(bearings: np.ndarray, heading: float) -> np.ndarray:
    diff = np.abs(np.mod(bearings - heading, 360.0))
    return np.where(diff > 180.0, 360.0 - diff, diff)
