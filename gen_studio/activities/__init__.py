"""Generation activities.

Each activity performs a single unit of work:
- build_request: Form state -> validated ``GenerationRequest``
- submit_generation: Submit a request to the generation backend
- check_status: One status check of a long-running generation
- record_history: Persist the metadata record of a successful generation
- history_queries: List / delete / clear history and sign artifact URLs
"""
