"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the dispatch layer to the outside world (provider APIs,
configuration files, logging) by implementing the interfaces defined in the
domain layer. Also hosts the retry engine.
"""
