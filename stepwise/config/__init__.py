"""Configuration records and loaders."""
