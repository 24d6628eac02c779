"""Cache tiers, provider clients, the cache manager and background jobs."""
