"""TaskTrack Database — declarative base, models, session management."""
