"""Position lifecycle: shared trailing rules (lifecycle) and the live manager (manager)."""
