"""clientdesk: client records core (spreadsheet import pipeline and grid editor)."""

__version__ = "0.1.0"
