"""Store subscription quota and lifecycle engine."""
