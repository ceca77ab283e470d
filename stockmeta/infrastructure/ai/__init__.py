"""AI Provider Adapters.

Provider registry, the credential validation probe and the default chat
completion executor, built on the openai and groq SDKs and implementing the
ports from the domain layer.
"""
