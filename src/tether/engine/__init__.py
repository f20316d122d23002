"""Agent session protocol engine."""
