"""Policy engine: policy elements, conditions, actions and reconciliation."""
