"""Statement-to-claim provenance (competitive, continuous, mixed-method)."""
