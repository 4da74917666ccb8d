"""CLI module for cyberbot."""
