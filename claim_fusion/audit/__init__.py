"""Read-only audit of a turn: statement fates, region alignment, completeness."""
