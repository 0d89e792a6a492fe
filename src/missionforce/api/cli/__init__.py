"""Missionforce command line interface."""
