"""Application wiring: factory, lifespan and background task tracking."""
