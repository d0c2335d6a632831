"""Schema drift engine: SSOT parsing, diffing, artifacts and gated execution."""
