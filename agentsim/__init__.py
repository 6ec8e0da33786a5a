"""Agent decision orchestration core.

This package contains the backend transport, agent state store, decision
dispatcher, tick scheduler, lifecycle manager, and the FastAPI control
surface.
"""
