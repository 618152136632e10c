"""Record schema, key derivation, merge rules, errors, and configuration."""
