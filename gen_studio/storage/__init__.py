"""Storage adapters.

- history_store: Append-only generation history (local filesystem or blob)
- blob_store: Generated artifacts, metadata sidecars, signed display URLs
"""
