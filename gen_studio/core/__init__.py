"""Core utilities and shared infrastructure.

- config: Configuration loading and validation
- constants: Named constants (polling cadence, history, cost)
- exceptions: Custom exception hierarchy
- error_messages: User-facing error text
- ingress: Activity input deserialisation and storage clients
"""
