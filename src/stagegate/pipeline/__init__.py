"""Step planning, execution, checking, diagnosis and gating for one task."""
