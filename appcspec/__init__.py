"""Build, validate and render App Container Images and check container environments."""

__version__ = "0.1.0"