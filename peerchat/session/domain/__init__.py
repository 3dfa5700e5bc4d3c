"""Domain entities of the chat session."""
