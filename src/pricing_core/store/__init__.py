"""Store subpackage - keyed pricing state and the clock collaborator."""
