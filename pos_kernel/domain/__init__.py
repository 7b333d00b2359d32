"""Pure domain helpers shared across the POS packages."""
