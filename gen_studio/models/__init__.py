"""Domain models.

- generation: Requests, artifacts, usage, backend results, operation handles
- metadata: Pydantic history record persisted per successful generation
- payloads: TypedDict contracts between orchestrator and activities
"""
