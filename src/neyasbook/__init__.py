"""
Neyasbook - backend for a writing studio with an AI editor and in-world personas.
"""

__version__ = "0.1.0"
