"""
TaskScope API Module

FastAPI backend exposing context collection and context management
to issue-tracker clients.
"""
