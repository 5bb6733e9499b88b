"""BlueSlash - household chores, peer verification and a gem economy."""
