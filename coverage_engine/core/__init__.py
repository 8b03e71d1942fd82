"""Configuration and enumerations."""
