"""Logging and request instrumentation wiring."""

from __future__ import annotations

from fastapi import FastAPI

from nearby.obs import logging as obs_logging
from nearby.obs import middleware
from nearby.settings import settings


def init(app: FastAPI) -> None:
	"""Attach JSON logging and the request middleware once per app."""
	if not settings.obs_enabled or getattr(app.state, "obs_installed", False):
		return
	obs_logging.configure_logging()
	middleware.install(app)
	app.state.obs_installed = True


__all__ = ["init"]
