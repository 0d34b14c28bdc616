"""Entity access evaluation engine: cache, admin bypass, rule walk, batch fan-out."""
