"""
Service layer.

``build_services`` wires every service to one key-value store and picks the
weather provider from configuration. The application builds the container
once at start-up and hands it to request handlers through
``agriadvisor.dependencies.services.get_services``.
"""

from typing import Optional

from agriadvisor.config import Settings
from agriadvisor.services.crop_ml import CropAdvisor
from agriadvisor.services.farms import FarmService
from agriadvisor.services.iot import IoTService
from agriadvisor.services.market import MarketService
from agriadvisor.services.notifications import NotificationService
from agriadvisor.services.weather import (
    OpenWeatherProvider,
    SyntheticWeatherSource,
    WeatherProvider,
    WeatherService,
)
from agriadvisor.utils.kv_store import KeyValueStore
from agriadvisor.utils.logging_config import get_logger

logger = get_logger(__name__)


class ServiceContainer:
    """Holds one instance of each service for the lifetime of the process."""

    def __init__(
        self,
        store: KeyValueStore,
        weather: WeatherService,
        iot: IoTService,
        market: MarketService,
        crops: CropAdvisor,
        farms: FarmService,
        notifications: NotificationService,
    ):
        self.store = store
        self.weather = weather
        self.iot = iot
        self.market = market
        self.crops = crops
        self.farms = farms
        self.notifications = notifications


def select_weather_provider(settings: Settings) -> WeatherProvider:
    if settings.WEATHER_API_KEY:
        logger.info("Weather provider: OpenWeatherMap")
        return OpenWeatherProvider(
            api_key=settings.WEATHER_API_KEY,
            base_url=settings.WEATHER_BASE_URL,
            timeout=settings.WEATHER_TIMEOUT,
        )
    logger.warning("WEATHER_API_KEY not set - serving synthetic weather data")
    return SyntheticWeatherSource()


def build_services(
    settings: Settings,
    store: Optional[KeyValueStore] = None,
    weather_provider: Optional[WeatherProvider] = None,
) -> ServiceContainer:
    store = store or KeyValueStore()
    return ServiceContainer(
        store=store,
        weather=WeatherService(
            store,
            weather_provider or select_weather_provider(settings),
            current_ttl=settings.WEATHER_CURRENT_TTL,
            forecast_ttl=settings.WEATHER_FORECAST_TTL,
        ),
        iot=IoTService(store, retention_seconds=settings.SENSOR_RETENTION_SECONDS),
        market=MarketService(store, price_ttl=settings.MARKET_PRICE_TTL),
        crops=CropAdvisor(store, recommendation_ttl=settings.RECOMMENDATION_TTL),
        farms=FarmService(store),
        notifications=NotificationService(store, history_limit=settings.NOTIFICATION_HISTORY_LIMIT),
    )
