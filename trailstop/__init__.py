"""Trailing stop engine: stop calculators, position lifecycle, strategy switching, backtesting."""

__version__ = "0.1.0"
