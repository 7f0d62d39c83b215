"""Identity policy enforcement on a Linux gateway."""
