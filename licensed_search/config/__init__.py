"""
Configuration centralisée du serveur MCP de recherche licenciée

Ce package contient:
- Settings: Gestionnaire de configuration avec support des variables d'environnement
- Dataclasses de configuration pour le ledger, l'API de recherche et la récupération
"""

from .settings import (
    settings,
    Settings,
    MCPConfig,
    LedgerConfig,
    SearchApiConfig,
    FetchConfig,
)

__all__ = [
    "settings",
    "Settings",
    "MCPConfig",
    "LedgerConfig",
    "SearchApiConfig",
    "FetchConfig",
]
