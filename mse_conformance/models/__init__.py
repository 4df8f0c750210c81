"""Models used by the conformance suite."""
