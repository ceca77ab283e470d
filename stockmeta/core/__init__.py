"""Core Application Layer: the dispatch services.

Task scheduler, credential pool manager and the per-item dispatch service,
wired to infrastructure only through domain interfaces.
"""
