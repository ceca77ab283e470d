"""Domain Layer: models, events, errors and ports of the dispatch layer.

Has no dependency on infrastructure code.
"""
