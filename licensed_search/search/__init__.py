"""
Recherche amont et récupération HTTP

Ce package contient:
- ExaSearchClient: client de l'API de recherche Exa
- ContentFetcher: GET HTTP avec timeout indépendant et troncature du corps
"""

from .exa_client import ExaSearchClient, ExaSearchResponse, ExaSearchResult
from .fetcher import ContentFetcher, FetchedPage

__all__ = [
    "ExaSearchClient",
    "ExaSearchResponse",
    "ExaSearchResult",
    "ContentFetcher",
    "FetchedPage",
]
