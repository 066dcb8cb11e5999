"""Domain layer of the track cache."""
