"""Core shared infrastructure for gitswarm.

This package contains foundational utilities:
    - result: Result type and the SwarmError hierarchy
    - config: Application configuration management
    - console: Rich console output and logging
    - decorators: CLI error presentation
"""
