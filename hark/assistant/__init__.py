"""
Conversational assistant built around a Gemini function-calling loop

This package provides:

- Conversation model: role-tagged messages in an append-only history
- Model gateway: Gemini generateContent over httpx with typed replies
- Tools: declarations advertised to the model and dispatch to the device executor
- Device commands: alarms, app launches, calls and searches published over MQTT
- Orchestration: the request / dispatch / continuation loop with unknown-tool fallback
- Session hosts: a foreground chat surface and a wake-word voice surface
- Speech: Wyoming STT/TTS and openWakeWord detection

Key modules:
- config: Configuration management from environment variables
- orchestrator: OrchestrationEngine and its turn outcomes
- llm: GeminiGateway and reply classification
- session: ChatSession, VoiceSession and run telemetry
"""

from __future__ import annotations

__all__ = [
    "config",
    "messages",
    "llm",
    "tools",
    "tool_gate",
    "actions",
    "orchestrator",
    "session",
    "mqtt",
]
