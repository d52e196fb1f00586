"""
Style passport studio: turn a short-form video into a structured description
of its pacing, emotional tone, structure and engagement.
"""

__version__ = "0.1.0"
