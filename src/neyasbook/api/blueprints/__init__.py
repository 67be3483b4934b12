"""
API blueprints: projects, manuscript storage, and the LLM-backed assistant.
"""
