"""Step and queue sequencing."""
