"""Agent Runner: AI coding agents in ephemeral sandboxes."""
