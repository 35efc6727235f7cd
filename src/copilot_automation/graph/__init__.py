"""Bounded agent loop built on LangGraph."""
