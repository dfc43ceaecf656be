"""
Licensed Search MCP - recherche web Exa avec licences Copyright.sh

Ce package fournit un serveur MCP (Model Context Protocol) qui effectue une
recherche web, vérifie la licence de chaque URL auprès du ledger et, sur
demande, récupère le contenu via le protocole x402 en déclarant l'usage.

Composants principaux:
- licensing: ledger (annuaire, acquisition, usage) et moteur de fetch licencié
- search: client Exa et récupération HTTP
- config: configuration centralisée
"""

__version__ = "0.1.0"
__author__ = "Licensed Search MCP Team"

# Imports principaux pour faciliter l'utilisation
from .mcp_server import LicensedSearchMCPServer, main

__all__ = [
    "LicensedSearchMCPServer",
    "main",
    "__version__",
]
