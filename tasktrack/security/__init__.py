"""TaskTrack Security — role/action permission table and API-key authentication."""
