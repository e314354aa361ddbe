"""
Mind Map Platform

Collaborative mind mapping with LLM-assisted idea generation.

Features:
- Mind maps, nodes and edges with per-user ownership
- Encrypted storage of third-party API keys
- Idea generation from an OpenAI-compatible chat completion endpoint
- Automatic layout of generated ideas around a parent node
"""

__version__ = '1.0.0'
__author__ = 'Platform Team'
