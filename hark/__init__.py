"""
Hark - Gemini-backed conversational assistant package

Root package for Hark: a conversation engine that answers directly, lets the
model call local device tools, and recovers when the model asks for a tool it
was never offered.

Core modules:
- utils: Environment parsing and small async helpers shared across modules
- assistant: Orchestration engine, Gemini gateway, device tools and the chat/voice hosts
"""

__version__ = "0.1.0"
