"""
Psychrometric Calculations
==========================

Pure utility functions for air-science derived metrics used in grow environments.

Functions:
- calculate_vpd: Vapor Pressure Deficit (the control variable of the fan loop)
- calculate_svp_kpa: Saturation vapor pressure (helper)
- calculate_dew_point_c: Dew point
- calculate_optimal_humidity / calculate_optimal_temperature: set points for a target VPD

All functions are stateless and deterministic.
"""
from __future__ import annotations

import math
from numbers import Number

MAGNUS_A = 17.27
MAGNUS_B = 237.3
SVP_BASE_KPA = 0.6108


def _as_float(value: object) -> float | None:
    if value is None or isinstance(value, bool) or not isinstance(value, Number):
        return None
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def calculate_svp_kpa(temperature_c: float) -> float:
    """
    Calculate Saturation Vapor Pressure (SVP) in kPa using Magnus formula.

    SVP = 0.6108 × exp(17.27 × T / (T + 237.3))

    Args:
        temperature_c: Temperature in Celsius

    Returns:
        Saturation vapor pressure in kPa
    """
    return SVP_BASE_KPA * math.exp((MAGNUS_A * temperature_c) / (temperature_c + MAGNUS_B))


def calculate_vpd(temperature_c: object, relative_humidity: object) -> float | None:
    """
    Calculate Vapor Pressure Deficit (VPD) in kPa.

    VPD = SVP × (1 - RH/100)

    Optimal VPD ranges for plants:
    - Seedlings/clones: 0.4-0.8 kPa
    - Vegetative: 0.8-1.2 kPa
    - Flowering: 1.0-1.5 kPa

    Zero readings are legitimate inputs (0 °C air, bone-dry air). Callers that
    aggregate zoned sensors drop non-positive readings before calling.

    Args:
        temperature_c: Temperature in Celsius
        relative_humidity: Relative humidity percentage (0-100)

    Returns:
        VPD in kPa, or None if an input is missing, non-numeric or out of range
    """
    temp_c = _as_float(temperature_c)
    humidity = _as_float(relative_humidity)
    if temp_c is None or humidity is None:
        return None
    if humidity < 0 or humidity > 100 or temp_c <= -MAGNUS_B:
        return None

    svp = calculate_svp_kpa(temp_c)
    return svp * (1 - humidity / 100.0)


def calculate_dew_point_c(temperature_c: object, relative_humidity: object) -> float | None:
    """
    Calculate dew point in Celsius (Magnus-Tetens approximation).

    Humidity above 100 % is capped at 100.

    Returns:
        Dew point rounded to 2 decimals, or None if an input is invalid or
        humidity is not positive
    """
    temp_c = _as_float(temperature_c)
    humidity = _as_float(relative_humidity)
    if temp_c is None or humidity is None or humidity <= 0 or temp_c <= -MAGNUS_B:
        return None
    humidity = min(humidity, 100.0)

    gamma = (MAGNUS_A * temp_c) / (MAGNUS_B + temp_c) + math.log(humidity / 100.0)
    return round((MAGNUS_B * gamma) / (MAGNUS_A - gamma), 2)


def calculate_optimal_humidity(target_vpd: object, temperature_c: object) -> float | None:
    """Relative humidity (%) that yields ``target_vpd`` at ``temperature_c``.

    Clamped to 0-100; None on invalid input.
    """
    vpd = _as_float(target_vpd)
    temp_c = _as_float(temperature_c)
    if vpd is None or temp_c is None or vpd < 0 or temp_c <= -MAGNUS_B:
        return None

    svp = calculate_svp_kpa(temp_c)
    humidity = (1 - vpd / svp) * 100.0
    return round(max(0.0, min(100.0, humidity)), 1)


def calculate_optimal_temperature(target_vpd: object, relative_humidity: object) -> float | None:
    """Air temperature (°C) that yields ``target_vpd`` at ``relative_humidity``.

    Inverts the Magnus formula. Saturated air (100 %) has no solution.
    """
    vpd = _as_float(target_vpd)
    humidity = _as_float(relative_humidity)
    if vpd is None or humidity is None or vpd <= 0 or humidity < 0 or humidity >= 100:
        return None

    svp = vpd / (1 - humidity / 100.0)
    ratio = math.log(svp / SVP_BASE_KPA)
    if ratio >= MAGNUS_A:
        return None
    return round(MAGNUS_B * ratio / (MAGNUS_A - ratio), 1)
