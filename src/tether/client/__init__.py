"""Terminal client for the agent session engine."""
