"""Configuration loading and defaults for shipyard.

Main components:
- load_settings: Load settings from YAML and SHIPYARD_* environment variables
- load_credentials: Build a cloud credential reference from AWS variables
- defaults: Region images, instance ladder, ports and wait bounds
"""

from shipyard.config.loader import load_credentials, load_settings

__all__ = ["load_credentials", "load_settings"]
