"""Domain types shared across the engine: endpoint descriptors, issues, results, errors."""
