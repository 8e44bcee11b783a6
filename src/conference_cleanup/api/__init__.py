"""Admin HTTP surface for the conference cleanup scheduler."""
