"""Configuration-driven motion step sequencer."""
