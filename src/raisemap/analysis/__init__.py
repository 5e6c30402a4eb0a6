"""Error-contract analysis: collection, propagation and consistency checks."""
