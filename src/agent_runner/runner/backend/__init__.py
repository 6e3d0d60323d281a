"""Local stand-ins for the agent CLI."""
