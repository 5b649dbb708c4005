"""Motion primitives, targets and geometry."""
