"""Configuration loading for mkimg."""
