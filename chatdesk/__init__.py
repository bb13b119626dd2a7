"""chatdesk: chat sessions, message history and pluggable reply generation."""
