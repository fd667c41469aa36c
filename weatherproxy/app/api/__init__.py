"""API routers for the weather proxy."""

from weatherproxy.app.api.aviation import router as aviation_router
from weatherproxy.app.api.news import router as news_router
from weatherproxy.app.api.status import router as status_router
from weatherproxy.app.api.weather import router as weather_router

__all__ = [
    "aviation_router",
    "news_router",
    "status_router",
    "weather_router",
]
