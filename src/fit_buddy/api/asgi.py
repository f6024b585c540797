"""ASGI entrypoint for the Fit Buddy API."""

from fit_buddy.api.app import create_app
from fit_buddy.app_logging import configure_logging
from fit_buddy.config import Settings
from fit_buddy.containers import build_container

settings = Settings()
# Before wiring, so warnings about disabled AI features are visible.
configure_logging(settings.log_level)
app = create_app(build_container(settings))
