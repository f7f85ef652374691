"""Service layer: grouping, hashing, reconciliation, batch driving and orchestration."""
