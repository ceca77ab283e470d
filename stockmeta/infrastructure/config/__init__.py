"""Configuration loading (YAML, .env, environment) and the dispatch settings snapshot."""
