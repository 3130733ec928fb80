"""Remote storage contract, error kinds and retry policy."""
