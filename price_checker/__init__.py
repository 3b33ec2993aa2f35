"""Scheduled stock price fetching with a fixed-point moving average."""

__version__ = "1.0.0"
