"""Configuration module for the appreg directory client."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
