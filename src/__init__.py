"""autowriter: staged long-form content generation."""

__version__ = "0.4.0"
