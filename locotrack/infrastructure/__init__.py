"""locotrack infrastructure - storage, position sources and platform capabilities."""
