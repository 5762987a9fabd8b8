"""Terminal stock price dashboard"""

__version__ = "0.1.0"
