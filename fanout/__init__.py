"""Fan-out notification router for object-store change events."""
