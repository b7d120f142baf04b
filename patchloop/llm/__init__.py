"""LLM access: provider routing, key rotation, chat client and response parsing."""
