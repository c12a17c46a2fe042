"""Token, command and billing services."""
