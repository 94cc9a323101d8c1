"""Core configuration for the cap table sync service."""
