"""Polycle Member: daily reports and task tracking on Google Sheets."""

__version__ = "0.1.0"
