"""HTTP surface for fieldgate."""
