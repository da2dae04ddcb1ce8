"""
Voice-driven assistant core for RedHelper

This package turns recognized speech into either a locally executed command or
an LLM request, and turns LLM replies into spoken answers and device actions:

- Intent parsing: Trigger-phrase matching over recognizer alternates (Russian and English)
- Dialog engine: Settings sub-dialogs with a single re-prompt, first-run name capture
- LLM escalation: Backend or OpenAI-compatible assist clients with per-session history
- Screen awareness: Accessibility tree snapshots, screen digests and follow-ups
- Element lookup: Text, id and content-description selectors against the live tree
- Device actions: Click, highlight, scroll, back and home published over MQTT
- Speech: MQTT-driven device TTS or local Wyoming/Piper playback

Key modules:
- config: Configuration management from environment variables
- commands: Command parser and trigger tables
- dialog: Conversation state machine
- llm: Assist clients and reply parsing
- follow_up: Follow-up window and screen-change watcher
- actions: Action events and MQTT dispatch
"""

from __future__ import annotations

__all__ = [
    "config",
    "commands",
    "dialog",
    "llm",
    "follow_up",
    "actions",
    "mqtt",
]
