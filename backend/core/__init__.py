"""Core shared logic for indicators, signal scoring, and models.

This package contains pure business logic with no I/O dependencies
(no database, Redis, or network access). The service layer in app/
feeds it price histories and acts on its results.
"""
