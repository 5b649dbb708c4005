"""In-process stand-ins for the external backends."""
