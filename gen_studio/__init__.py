"""Generative Media Studio backend.

Azure Functions application that submits image and video generation
requests to a managed AI backend, tracks long-running video jobs to
completion with backoff polling, and records every successful
generation in an append-only history.
"""

__version__ = "0.1.0"
