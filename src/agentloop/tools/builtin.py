"""Built-in helper functions: current time and a canned weather report."""

import logging
from datetime import datetime, timezone
from email.utils import format_datetime

from .functions import FunctionSet

logger = logging.getLogger(__name__)

HELPER_NAMESPACE = "HelperFunctions"

# Canned forecasts; any other city gets the default
WEATHER_BY_CITY = {
    "boston": "61 and rainy",
    "london": "55 and cloudy",
    "miami": "80 and sunny",
    "paris": "60 and rainy",
    "tokyo": "50 and sunny",
    "sydney": "75 and sunny",
    "tel aviv": "80 and sunny",
}
DEFAULT_WEATHER = "31 and snowing"


def get_current_utc_time() -> str:
    """Retrieves the current time in UTC."""
    return format_datetime(datetime.now(timezone.utc), usegmt=True)


def get_weather_for_city(cityName: str) -> str:
    """Gets the current weather for the specified city."""
    weather = WEATHER_BY_CITY.get(cityName.strip().lower(), DEFAULT_WEATHER)
    logger.debug(f"Weather for {cityName}: {weather}")
    return weather


def create_helper_functions() -> FunctionSet:
    """Create the HelperFunctions provider."""
    helpers = FunctionSet(HELPER_NAMESPACE, description="Time and weather helpers")
    helpers.add(get_current_utc_time, name="GetCurrentUtcTime")
    helpers.add(get_weather_for_city, name="Get_Weather_For_City")
    return helpers
