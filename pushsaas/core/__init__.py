"""Framework-independent building blocks."""
