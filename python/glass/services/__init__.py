"""Service layer: encryption, auth, migration, model state and events."""
