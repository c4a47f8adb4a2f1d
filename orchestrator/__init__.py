"""Intake notification orchestration package."""
