"""
Weather service.

Fetches current conditions and forecasts from a weather provider and
derives agricultural indices from them. Two providers share one
interface:

- ``OpenWeatherProvider`` calls the OpenWeatherMap REST API.
- ``SyntheticWeatherSource`` generates bounded random conditions. It is the
  configured provider when no API key is set and the fallback whenever the
  real provider fails at request time.
"""

import random
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from agriadvisor.core.exceptions import UpstreamUnavailableError
from agriadvisor.schemas.base import Coordinates
from agriadvisor.schemas.weather import (
    AgronomicIndices,
    DailyForecast,
    WeatherForecast,
    WeatherObservation,
)
from agriadvisor.utils import agro
from agriadvisor.utils.kv_store import KV_KEYS, KV_TTL, KeyValueStore
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)

INDICES_FORECAST_DAYS = 14
DEFAULT_UV_INDEX = 5


def build_observation(
    location: str,
    temperature: float,
    humidity: float,
    pressure: float,
    wind_speed: float,
    wind_direction: float,
    cloudiness: float,
    temp_max: Optional[float] = None,
    temp_min: Optional[float] = None,
    **extra,
) -> WeatherObservation:
    """Assemble an observation and compute its agricultural derivations."""
    return WeatherObservation(
        location=location,
        temperature=round(temperature),
        humidity=humidity,
        pressure=pressure,
        wind_speed=wind_speed,
        wind_direction=wind_direction,
        cloudiness=cloudiness,
        timestamp=datetime.now(timezone.utc),
        dew_point=round(agro.calculate_dew_point(temperature, humidity), 1),
        heat_index=agro.calculate_heat_index(temperature, humidity),
        evapotranspiration=agro.calculate_et0(temperature, humidity, wind_speed, temp_max, temp_min),
        soil_temperature=agro.estimate_soil_temperature(temperature, cloudiness),
        **extra,
    )


class WeatherProvider:
    """
    Interface shared by the real and synthetic weather sources.

    Implementations raise ``UpstreamUnavailableError`` when they cannot answer.
    """

    name = "provider"

    async def current(self, location: str) -> WeatherObservation:
        raise NotImplementedError

    async def forecast(self, location: str, days: int) -> WeatherForecast:
        raise NotImplementedError


class OpenWeatherProvider(WeatherProvider):
    """OpenWeatherMap client (metric units)."""

    name = "openweathermap"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _uv_index(self, client: httpx.AsyncClient, lat: float, lon: float) -> int:
        """UV index is best-effort; a failed lookup reports moderate UV."""
        try:
            response = await client.get(
                "/uvi", params={"lat": lat, "lon": lon, "appid": self.api_key}
            )
            response.raise_for_status()
            return round(response.json()["value"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.debug(f"UV index lookup failed for ({lat}, {lon}): {e}")
            return DEFAULT_UV_INDEX

    async def current(self, location: str) -> WeatherObservation:
        try:
            return await self._current(location)
        except (httpx.HTTPError, KeyError, ValueError, TypeError) as e:
            raise UpstreamUnavailableError(f"OpenWeatherMap current weather failed: {e}") from e

    async def forecast(self, location: str, days: int) -> WeatherForecast:
        try:
            return await self._forecast(location, days)
        except (httpx.HTTPError, KeyError, ValueError, TypeError) as e:
            raise UpstreamUnavailableError(f"OpenWeatherMap forecast failed: {e}") from e

    async def _current(self, location: str) -> WeatherObservation:
        async with self._client() as client:
            response = await client.get(
                "/weather",
                params={"q": location, "appid": self.api_key, "units": "metric"},
            )
            response.raise_for_status()
            data = response.json()
            coord = data["coord"]
            uv_index = await self._uv_index(client, coord["lat"], coord["lon"])

        main = data["main"]
        weather = (data.get("weather") or [{}])[0]
        return build_observation(
            location=data.get("name", location),
            temperature=main["temp"],
            humidity=main["humidity"],
            pressure=main["pressure"],
            wind_speed=data["wind"]["speed"],
            wind_direction=data["wind"].get("deg", 0),
            cloudiness=data.get("clouds", {}).get("all", 0),
            temp_max=main.get("temp_max"),
            temp_min=main.get("temp_min"),
            country=data.get("sys", {}).get("country"),
            visibility=data.get("visibility", 0) / 1000,
            uv_index=uv_index,
            description=weather.get("description"),
            icon=weather.get("icon"),
            coordinates=Coordinates(lat=coord["lat"], lon=coord["lon"]),
            source=self.name,
        )

    async def _forecast(self, location: str, days: int) -> WeatherForecast:
        async with self._client() as client:
            response = await client.get(
                "/forecast",
                params={
                    "q": location,
                    "appid": self.api_key,
                    "units": "metric",
                    "cnt": days * 8,  # 3-hour steps
                },
            )
            response.raise_for_status()
            data = response.json()

        daily = agro.aggregate_forecast_items(data["list"])
        return WeatherForecast(
            location=data["city"]["name"],
            country=data["city"].get("country"),
            forecasts=daily,
            agricultural_advice=agro.generate_agricultural_advice(daily),
            timestamp=datetime.now(timezone.utc),
            source=self.name,
        )


class SyntheticWeatherSource(WeatherProvider):
    """
    Bounded random weather for development and provider outages.

    Values stay inside plausible ranges for a tropical growing region
    (25-35 °C, 50-90 % humidity). Derived indices are computed from the
    generated raw values with the same formulas as real data.
    """

    name = "synthetic"

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    async def current(self, location: str) -> WeatherObservation:
        rng = self.rng
        temperature = 25 + rng.random() * 10
        return build_observation(
            location=location,
            temperature=temperature,
            humidity=round(50 + rng.random() * 40),
            pressure=round(1010 + rng.random() * 20),
            wind_speed=round(rng.random() * 10, 1),
            wind_direction=round(rng.random() * 360),
            cloudiness=round(rng.random() * 100),
            temp_max=temperature + 5,
            temp_min=temperature - 5,
            country="IN",
            visibility=round(5 + rng.random() * 10, 1),
            uv_index=rng.randint(1, 11),
            description="partly cloudy",
            icon="02d",
            coordinates=Coordinates(lat=19.9975, lon=73.7898),
            source=self.name,
        )

    async def forecast(self, location: str, days: int) -> WeatherForecast:
        rng = self.rng
        base_temp = 25
        today = datetime.now(timezone.utc).date()
        conditions = [("sunny", "01d"), ("partly cloudy", "02d"), ("cloudy", "03d"), ("light rain", "10d")]

        forecasts = []
        for i in range(days):
            variation = rng.random() * 10 - 5
            description, icon = rng.choice(conditions)
            forecasts.append(DailyForecast(
                date=(today + timedelta(days=i)).isoformat(),
                temp_min=round(base_temp + variation - 3),
                temp_max=round(base_temp + variation + 7),
                avg_humidity=round(60 + rng.random() * 30),
                avg_wind_speed=round(rng.random() * 15, 1),
                precipitation=round(rng.random() * 5, 1),
                description=description,
                icon=icon,
            ))

        return WeatherForecast(
            location=location,
            country="IN",
            forecasts=forecasts,
            agricultural_advice=agro.generate_agricultural_advice(forecasts),
            timestamp=datetime.now(timezone.utc),
            source=self.name,
        )


class WeatherService:
    """
    Weather and agronomic index service.

    Results are cached in the key-value store. Provider failures are
    logged and answered from the synthetic source; callers never see an
    upstream error.
    """

    def __init__(
        self,
        store: KeyValueStore,
        provider: WeatherProvider,
        fallback: Optional[SyntheticWeatherSource] = None,
        current_ttl: int = KV_TTL["weather_current"],
        forecast_ttl: int = KV_TTL["weather_forecast"],
    ):
        self.store = store
        self.provider = provider
        self.fallback = fallback or SyntheticWeatherSource()
        self.current_ttl = current_ttl
        self.forecast_ttl = forecast_ttl

    async def get_current_weather(self, location: str) -> WeatherObservation:
        key = KV_KEYS["weather_current"](location)
        cached = self.store.get(key)
        if cached is not None:
            return WeatherObservation.model_validate(cached)

        try:
            observation = await self.provider.current(location)
        except UpstreamUnavailableError as e:
            logger.warning(f"Weather provider failed for {location}: {e}. Using synthetic data.")
            observation = await self.fallback.current(location)

        self.store.set(key, observation.to_store(), ttl=self.current_ttl)
        return observation

    async def get_forecast(self, location: str, days: int = 7) -> WeatherForecast:
        key = KV_KEYS["weather_forecast"](location, days)
        cached = self.store.get(key)
        if cached is not None:
            return WeatherForecast.model_validate(cached)

        try:
            forecast = await self.provider.forecast(location, days)
        except UpstreamUnavailableError as e:
            logger.warning(f"Forecast provider failed for {location}: {e}. Using synthetic data.")
            forecast = await self.fallback.forecast(location, days)

        self.store.set(key, forecast.to_store(), ttl=self.forecast_ttl)
        return forecast

    async def get_agricultural_indices(self, location: str) -> AgronomicIndices:
        current = await self.get_current_weather(location)
        forecast = await self.get_forecast(location, INDICES_FORECAST_DAYS)
        days = forecast.forecasts

        return AgronomicIndices(
            location=location,
            growing_degree_days=round(agro.accumulate_gdd(days), 1),
            chill_hours=agro.calculate_chill_hours(days),
            water_requirement=agro.calculate_water_requirement(current.evapotranspiration, days),
            pest_risk=agro.assess_pest_risk(days),
            disease_risk=agro.assess_disease_risk(days),
            optimal_planting_window=agro.determine_planting_window(days),
            harvest_readiness=agro.assess_harvest_readiness(days),
            forecast_days=len(days),
            timestamp=datetime.now(timezone.utc),
        )
