"""Core domain layer: models, directives, prompts and interfaces."""
