"""
Remix services: clip resolution, ledger registration, royalty splitting,
settlement, enrichment, tagging and the creation pipeline.
"""

from .container import ServiceContainer, build_services
