"""codewarden: declarative code-quality gate for source trees."""

__version__ = "0.1.0"
