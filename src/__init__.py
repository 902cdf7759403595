"""
FitData Coach - coach/athlete training records backend.

This package contains the complete application:
- core: Framework-agnostic record logic (workouts, personal records, credits)
- infrastructure: Record store backends
- api: FastAPI routes and dependencies
- config: Application configuration
"""

__version__ = "0.1.0"
