"""
RedHelper - voice-driven assistive layer

Root package for RedHelper, a conversational command engine that lets a user
control a device and query an LLM through spoken commands.

Core modules:
- assistant: Intent parsing, dialog state machine, screen change detection,
  element lookup, LLM escalation and device action dispatch
- config_persist: Debounced persistence of user settings to redhelper.conf
- utils: Environment parsing and async helpers
"""

__version__ = "0.4.2"
