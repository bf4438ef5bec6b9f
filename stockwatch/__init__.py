"""Product page stock availability monitor"""

__version__ = "1.0.0"
