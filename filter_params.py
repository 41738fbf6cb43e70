"""Derived filter parameters.

Every function here maps one human-facing strength value onto the concrete
inputs of an ffmpeg filter. They are total: unparseable, non-finite, negative
or zero input yields the algorithm default, never an exception.
"""

from __future__ import annotations

import math
from typing import NamedTuple, Optional

AUTO = "auto"

# ── Defaults and ranges ───────────────────────────────────────────────────────

HQDN3D_DEFAULT = 4.0
HQDN3D_RANGE = (1.0, 10.0)

DERING_DEFAULT = 0.5
DERING_LUMA_MAX = 15.0

BM3D_DEFAULT_SIGMA = 2.5
BM3D_MAX_SIGMA = 20.0

NLMEANS_DEFAULT = 1.0
NLMEANS_RANGE = (1.0, 30.0)

ATADENOISE_DEFAULT = 9.0
ATADENOISE_RANGE = (1.0, 20.0)

F3KDB_DEFAULT_Y = 0.03
F3KDB_DEFAULT_C = 0.015
F3KDB_DEFAULT_RANGE = 16
F3KDB_THRESHOLD_RANGE = (0.001, 0.5)
F3KDB_SCALE = 2000.0

CAS_DEFAULT = 0.25
UNSHARP_DEFAULT_RADIUS = 5
UNSHARP_RADIUS_RANGE = (3, 23)
UNSHARP_DEFAULT_AMOUNT = 1.0
UNSHARP_AMOUNT_RANGE = (-2.0, 5.0)

GRADFUN_DEFAULT = 1.2
GRADFUN_RANGE = (0.51, 64.0)

DEBAND_DEFAULT = 0.02
DEBAND_RANGE = (0.00003, 0.5)

GRAIN_DEFAULT = 1
GRAIN_RANGE = (0, 100)


class Hqdn3dParams(NamedTuple):
    luma_spatial: float
    chroma_spatial: float
    luma_tmp: float
    chroma_tmp: float


class Bm3dParams(NamedTuple):
    sigma: Optional[float]
    estim: str


class NlmeansParams(NamedTuple):
    strength: float
    patch: int
    research: int


class AtadenoiseParams(NamedTuple):
    strength: float
    a: float
    b: float


class F3kdbParams(NamedTuple):
    thr_y: float
    thr_c: float
    range: int


class UnsharpParams(NamedTuple):
    radius: int
    amount: float


def _to_float(value: object) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return None
    return number if math.isfinite(number) else None


def _clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def _positive_or(value: object, default: float) -> float:
    number = _to_float(value)
    if number is None or number <= 0:
        return default
    return number


def format_number(value: float) -> str:
    """Render a number without trailing zeros (2.0 -> "2", 0.25 -> "0.25")."""
    text = "%.6f" % float(value)
    return text.rstrip("0").rstrip(".") or "0"


def parse_strength(value: object) -> float:
    """Parse a strength value; ``auto``, unparseable and negative input give 0."""
    number = _to_float(value)
    if number is None or number < 0:
        return 0.0
    return number


def hqdn3d_params(strength: object) -> Hqdn3dParams:
    luma = _clamp(_positive_or(strength, HQDN3D_DEFAULT), *HQDN3D_RANGE)
    luma_tmp = luma * 1.5
    return Hqdn3dParams(luma, luma * 0.75, luma_tmp, luma_tmp * 0.75)


def dering_params(strength: object) -> Hqdn3dParams:
    """Deringing is a light hqdn3d; the luma cap applies after the ratios."""
    base = _positive_or(strength, DERING_DEFAULT)
    luma = base * 8.0
    chroma = luma * 0.75
    luma_tmp = luma * 1.5
    chroma_tmp = luma_tmp * 0.75
    return Hqdn3dParams(min(luma, DERING_LUMA_MAX), chroma, luma_tmp, chroma_tmp)


def bm3d_params(strength: object) -> Bm3dParams:
    if isinstance(strength, str) and strength.strip().lower() == AUTO:
        return Bm3dParams(None, "final")
    sigma = min(_positive_or(strength, BM3D_DEFAULT_SIGMA), BM3D_MAX_SIGMA)
    return Bm3dParams(sigma, "basic")


def nlmeans_params(strength: object) -> NlmeansParams:
    s = _clamp(_positive_or(strength, NLMEANS_DEFAULT), *NLMEANS_RANGE)
    patch = 7
    for threshold in (5, 10, 15, 20):
        if s > threshold:
            patch += 2
    research = 15
    for threshold in (5, 10, 15, 20, 25):
        if s > threshold:
            research += 2
    return NlmeansParams(s, patch, research)


def atadenoise_params(strength: object) -> AtadenoiseParams:
    t = _clamp(_positive_or(strength, ATADENOISE_DEFAULT), *ATADENOISE_RANGE)
    return AtadenoiseParams(t, 0.01 + (t / 20.0) * 0.03, 0.02 + (t / 20.0) * 0.06)


def f3kdb_params(range_value: object, y: object, cbcr: object) -> F3kdbParams:
    y_value = _positive_or(y, 0.0)
    c_value = _positive_or(cbcr, 0.0)
    thr_y = y_value / F3KDB_SCALE if y_value else F3KDB_DEFAULT_Y
    thr_c = c_value / F3KDB_SCALE if c_value else F3KDB_DEFAULT_C

    r = _to_float(range_value)
    radius = int(r) if r is not None else 0
    if radius < 1:
        radius = F3KDB_DEFAULT_RANGE

    return F3kdbParams(
        _clamp(thr_y, *F3KDB_THRESHOLD_RANGE),
        _clamp(thr_c, *F3KDB_THRESHOLD_RANGE),
        radius,
    )


def cas_strength(strength: object) -> float:
    return min(_positive_or(strength, CAS_DEFAULT), 1.0)


def unsharp_params(radius: object, amount: object) -> UnsharpParams:
    """Matrix size must be odd for ffmpeg's unsharp; even sizes round up."""
    size = _positive_or(radius, UNSHARP_DEFAULT_RADIUS)
    matrix = int(_clamp(round(size), *UNSHARP_RADIUS_RANGE))
    if matrix % 2 == 0:
        matrix += 1
    if matrix > UNSHARP_RADIUS_RANGE[1]:
        matrix -= 2

    value = _to_float(amount)
    if value is None:
        value = UNSHARP_DEFAULT_AMOUNT
    return UnsharpParams(matrix, _clamp(value, *UNSHARP_AMOUNT_RANGE))


def gradfun_strength(strength: object) -> float:
    return _clamp(_positive_or(strength, GRADFUN_DEFAULT), *GRADFUN_RANGE)


def deband_threshold(strength: object) -> float:
    return _clamp(_positive_or(strength, DEBAND_DEFAULT), *DEBAND_RANGE)


def grain_strength(strength: object) -> int:
    value = _to_float(strength)
    if value is None or value < 0:
        return GRAIN_DEFAULT
    return int(_clamp(round(value), *GRAIN_RANGE))
