"""Conversation layer: command parsing, intent classification and turn orchestration."""
