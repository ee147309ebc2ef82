"""HTTP surface of the memory subsystem."""
