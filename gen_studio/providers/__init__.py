"""Generation backend adapters.

- base: ``GenerationBackend`` contract and provider exceptions
- factory: Name -> adapter registry
- vertex_ai: Imagen, Gemini image, and Veo over the Vertex AI REST API
"""
