"""leadpitch: spreadsheet lead import, cleaning and quota-gated pitch outreach."""

__version__ = "0.1.0"
