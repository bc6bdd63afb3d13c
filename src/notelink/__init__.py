"""NoteLink: edit-session coordination for an AI-assisted note workspace."""

__version__ = "0.3.0"

__all__ = ["__version__"]
