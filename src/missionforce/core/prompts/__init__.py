"""Instruction builders for the planner and mission agents."""
