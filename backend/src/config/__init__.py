"""Configuration module for backend services."""
