"""FastAPI routers for the worker.

Routers are grouped by domain (transcribe, export, feedback, sessions).
"""
