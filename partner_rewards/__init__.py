"""Partner rating, achievement and tier progression engine."""

__version__ = "1.0.0"
