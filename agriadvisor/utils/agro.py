"""
Agrometeorological calculation functions for the Smart Farm Advisory API.

This module turns raw weather observations and daily forecasts into
agronomic indices:
- Dew point (Magnus approximation) and heat index (Rothfusz regression)
- Reference evapotranspiration proxy and soil temperature estimate
- Growing Degree Days (GDD) and chill hours over a forecast window
- Pest risk, disease risk, planting window and harvest readiness classes

All functions are pure. The ET₀ figure is a temperature/humidity/wind
proxy, not FAO-56 Penman-Monteith, and is meant for relative irrigation
planning only.

References:
- Alduchov & Eskridge (1996): Improved Magnus form approximation
- Rothfusz (1990): The heat index equation, NWS Technical Attachment SR 90-23
- McMaster & Wilhelm (1997): Growing degree-days methods
- Hargreaves & Samani (1985): Reference crop evapotranspiration from temperature
"""

import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from agriadvisor.schemas.weather import DailyForecast

# Magnus coefficients
MAGNUS_A = 17.27
MAGNUS_B = 237.7

# Rothfusz regression coefficients (°C form)
HEAT_INDEX_COEFFICIENTS = (
    -8.78469475556,
    1.61139411,
    2.33854883889,
    -0.14611605,
    -0.012308094,
    -0.0164248277778,
    0.002211732,
    0.00072546,
    -0.000003582,
)
HEAT_INDEX_MIN_TEMP = 27.0

DEFAULT_BASE_TEMP = 10.0
CHILL_RANGE = (0.0, 7.0)
CHILL_HOURS_PER_DAY = 8
WET_DAY_MM = 1.0
DEFAULT_ET0 = 3.0
CROP_COEFFICIENT = 1.2


def calculate_dew_point(temperature: float, humidity: float) -> float:
    """
    Calculate dew point using the Magnus approximation.

    Args:
        temperature: Air temperature (°C)
        humidity: Relative humidity (%), clamped to [1, 100]

    Returns:
        Dew point (°C); never above ``temperature``
    """
    rh = min(100.0, max(1.0, humidity))
    alpha = (MAGNUS_A * temperature) / (MAGNUS_B + temperature) + math.log(rh / 100.0)
    return (MAGNUS_B * alpha) / (MAGNUS_A - alpha)


def calculate_heat_index(temperature: float, humidity: float) -> float:
    """
    Calculate heat index for livestock and field-worker safety.

    Below 27 °C the heat index equals the air temperature. Above it the
    Rothfusz polynomial is evaluated and rounded to the nearest degree.
    The regression undershoots in very dry air, so the result is never
    reported below the air temperature.

    Args:
        temperature: Air temperature (°C)
        humidity: Relative humidity (%)

    Returns:
        Heat index (°C)
    """
    if temperature < HEAT_INDEX_MIN_TEMP:
        return temperature

    c1, c2, c3, c4, c5, c6, c7, c8, c9 = HEAT_INDEX_COEFFICIENTS
    t = temperature
    rh = humidity
    hi = (
        c1 + c2 * t + c3 * rh + c4 * t * rh
        + c5 * t * t + c6 * rh * rh
        + c7 * t * t * rh + c8 * t * rh * rh
        + c9 * t * t * rh * rh
    )
    return max(float(round(hi)), temperature)


def calculate_et0(
    temperature: float,
    humidity: float,
    wind_speed: float,
    temp_max: Optional[float] = None,
    temp_min: Optional[float] = None,
) -> float:
    """
    Estimate reference evapotranspiration (mm/day).

    ET₀ = 0.0023 × (T + 17.8) × √|Tmax − Tmin| × (RH/100) × (0.36·wind + 1)

    A missing or zero daily range falls back to 10 °C.

    Args:
        temperature: Mean air temperature (°C)
        humidity: Relative humidity (%)
        wind_speed: Wind speed (m/s)
        temp_max: Daily maximum temperature (°C)
        temp_min: Daily minimum temperature (°C)

    Returns:
        ET₀ in mm/day, floored at 0 and rounded to 2 decimals
    """
    daily_range = 0.0
    if temp_max is not None and temp_min is not None:
        daily_range = abs(temp_max - temp_min)
    if not daily_range:
        daily_range = 10.0

    et0 = (
        0.0023 * (temperature + 17.8) * math.sqrt(daily_range)
        * (humidity / 100.0) * (wind_speed * 0.36 + 1)
    )
    return max(0.0, round(et0, 2))


def estimate_soil_temperature(air_temperature: float, cloudiness: float) -> float:
    """Estimate topsoil temperature from air temperature and cloud cover."""
    cloud_factor = 1 - (cloudiness / 100.0) * 0.2
    return round(air_temperature * 0.9 * cloud_factor + 2, 1)


def calculate_gdd(temp_max: float, temp_min: float, base_temp: float = DEFAULT_BASE_TEMP) -> float:
    """
    Calculate Growing Degree Days for one day (average method).

    GDD = max(0, ((Tmax + Tmin) / 2) - Tbase)

    Example:
        gdd = calculate_gdd(32, 22, base_temp=10)
        # Result: 17.0
    """
    tavg = (temp_max + temp_min) / 2
    return max(0.0, tavg - base_temp)


def accumulate_gdd(forecasts: Sequence[DailyForecast], base_temp: float = DEFAULT_BASE_TEMP) -> float:
    """Sum daily GDD over a forecast window."""
    return sum(calculate_gdd(day.temp_max, day.temp_min, base_temp) for day in forecasts)


def calculate_chill_hours(forecasts: Sequence[DailyForecast]) -> int:
    """Approximate chill hours: 8 hours for each day whose minimum is within 0-7 °C."""
    low, high = CHILL_RANGE
    return sum(CHILL_HOURS_PER_DAY for day in forecasts if low <= day.temp_min <= high)


def calculate_water_requirement(et0: Optional[float], forecasts: Sequence[DailyForecast]) -> float:
    """
    Net irrigation need over the forecast window (mm).

    Gross need is ET₀ × days × crop coefficient; forecast rain is subtracted.
    """
    daily_et0 = et0 or DEFAULT_ET0
    rainfall = sum(day.precipitation for day in forecasts)
    gross = daily_et0 * len(forecasts) * CROP_COEFFICIENT
    return max(0.0, round(gross - rainfall, 2))


def _average_temperature(forecasts: Sequence[DailyForecast]) -> float:
    return sum((day.temp_max + day.temp_min) / 2 for day in forecasts) / len(forecasts)


def _average_humidity(forecasts: Sequence[DailyForecast]) -> float:
    return sum(day.avg_humidity for day in forecasts) / len(forecasts)


def assess_pest_risk(forecasts: Sequence[DailyForecast]) -> str:
    """Warm and humid windows favor pest build-up."""
    if not forecasts:
        return "Low"
    avg_temp = _average_temperature(forecasts)
    avg_humidity = _average_humidity(forecasts)

    if 25 < avg_temp < 35 and avg_humidity > 60:
        return "High"
    elif avg_temp > 20 and avg_humidity > 50:
        return "Medium"
    return "Low"


def assess_disease_risk(forecasts: Sequence[DailyForecast]) -> str:
    """Humidity and the share of wet days drive fungal disease pressure."""
    if not forecasts:
        return "Low"
    avg_humidity = _average_humidity(forecasts)
    wet_days = sum(1 for day in forecasts if day.precipitation > WET_DAY_MM)
    n = len(forecasts)

    if avg_humidity > 80 or wet_days > n / 2:
        return "High"
    elif avg_humidity > 65 or wet_days > n / 4:
        return "Medium"
    return "Low"


def determine_planting_window(forecasts: Sequence[DailyForecast]) -> str:
    """Grade the window by the share of days fit for sowing."""
    if not forecasts:
        return "Poor"
    suitable = sum(
        1 for day in forecasts
        if day.temp_min > 5 and day.temp_max < 40 and day.precipitation < 10
    )
    n = len(forecasts)

    if suitable > n * 0.8:
        return "Excellent"
    elif suitable > n * 0.6:
        return "Good"
    elif suitable > n * 0.4:
        return "Fair"
    return "Poor"


def assess_harvest_readiness(forecasts: Sequence[DailyForecast]) -> str:
    """Grade harvest conditions by dry days and air humidity."""
    if not forecasts:
        return "Poor"
    dry_days = sum(1 for day in forecasts if day.precipitation < WET_DAY_MM)
    avg_humidity = _average_humidity(forecasts)
    n = len(forecasts)

    if dry_days > n * 0.8 and avg_humidity < 70:
        return "Excellent"
    elif dry_days > n * 0.6:
        return "Good"
    return "Poor"


def generate_agricultural_advice(forecasts: Sequence[DailyForecast]) -> List[str]:
    """Plain-language advice for the forecast window."""
    if not forecasts:
        return []

    advice = []
    total_rain = sum(day.precipitation for day in forecasts)
    avg_temp = _average_temperature(forecasts)
    avg_humidity = _average_humidity(forecasts)

    if total_rain < 5:
        advice.append("Consider irrigation planning as low rainfall is expected")
    elif total_rain > 50:
        advice.append("Ensure proper drainage systems are in place due to heavy rainfall forecast")

    if avg_temp > 35:
        advice.append("High temperatures expected - provide shade for livestock and increase watering frequency")
    elif avg_temp < 10:
        advice.append("Cold temperatures may affect crop growth - consider protective measures")

    if avg_humidity > 80:
        advice.append("High humidity increases disease risk - monitor crops closely and improve ventilation")

    return advice


def aggregate_forecast_items(items: Sequence[Dict]) -> List[DailyForecast]:
    """
    Collapse 3-hourly provider forecast items into daily summaries.

    Each item follows the OpenWeatherMap ``/forecast`` list shape:
    ``{"dt": epoch, "main": {"temp", "humidity"}, "wind": {"speed"},
    "rain": {"3h"}, "snow": {"3h"}, "weather": [{"description", "icon"}]}``.
    Days keep first-seen order.
    """
    days: Dict[str, Dict] = {}

    for item in items:
        day_key = datetime.fromtimestamp(item["dt"], tz=timezone.utc).date().isoformat()
        main = item["main"]
        weather = (item.get("weather") or [{}])[0]

        day = days.get(day_key)
        if day is None:
            day = days[day_key] = {
                "temp_min": main["temp"],
                "temp_max": main["temp"],
                "humidity": [],
                "wind": [],
                "precipitation": 0.0,
                "description": weather.get("description"),
                "icon": weather.get("icon"),
            }

        day["temp_min"] = min(day["temp_min"], main["temp"])
        day["temp_max"] = max(day["temp_max"], main["temp"])
        day["humidity"].append(main["humidity"])
        day["wind"].append(item.get("wind", {}).get("speed", 0.0))
        day["precipitation"] += (item.get("rain") or {}).get("3h", 0.0)
        day["precipitation"] += (item.get("snow") or {}).get("3h", 0.0)

    return [
        DailyForecast(
            date=day_key,
            temp_min=round(day["temp_min"]),
            temp_max=round(day["temp_max"]),
            avg_humidity=round(sum(day["humidity"]) / len(day["humidity"])),
            avg_wind_speed=round(sum(day["wind"]) / len(day["wind"]), 1),
            precipitation=round(day["precipitation"], 1),
            description=day["description"],
            icon=day["icon"],
        )
        for day_key, day in days.items()
    ]
