"""TaskTrack Tasks — lifecycle manager, comments, service boundary, maintenance."""
