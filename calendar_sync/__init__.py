"""Calendar attendee sync service driven by Google Calendar push notifications."""

__version__ = "0.1.0"
