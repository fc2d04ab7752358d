"""Configuration package."""

from sdr_pipeline.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
