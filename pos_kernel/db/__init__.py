"""Database layer: declarative base, portable column types, engine helpers."""
