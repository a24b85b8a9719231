"""Configuration defaults."""
