"""Host adapters for Agent Breaker."""
