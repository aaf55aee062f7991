"""Store subscriptions: activation, management, query, sweeps and reconciliation."""
