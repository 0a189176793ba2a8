"""Pydantic schemas for sessions, timelines, results and analysis."""
