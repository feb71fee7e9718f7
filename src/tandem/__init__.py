"""Tandem — agent orchestration core.

Turn loop, sub-agent delegation, permission rules, provider credentials
and failure classification for LLM agents that call tools.
"""

__version__ = "0.1.0"
