"""Configuration, errors, time helpers and schedule locks."""
