"""Application services: planning, orchestration and settings."""
