"""
pos_config -- Process settings for the POS ingestion service.

Public API:
    load_settings(path=None, environ=None) -> Settings

Settings come from an optional YAML file (named explicitly or through the
``POS_INGESTION_CONFIG`` environment variable) overlaid with ``POS_*``
environment variables.  Vendor integrations themselves are NOT configured
here; they live in the database and are read by the config repository.
The optional ``seed_file`` setting names a YAML file of vendors that
``pos_ingestion.services.seeder`` applies at startup.
"""

from pos_config.loader import load_settings, load_yaml_file, parse_settings
from pos_config.settings import Settings

__all__ = ["Settings", "load_settings", "load_yaml_file", "parse_settings"]
