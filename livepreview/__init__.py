"""livepreview - ephemeral live previews of web projects behind a session-scoped proxy."""

__version__ = "0.1.0"
