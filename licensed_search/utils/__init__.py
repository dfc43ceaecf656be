"""
Utilitaires

Ce package contient:
- TokenEstimator: estimation du nombre de tokens pour le journal d'usage
"""

from .tokens import TokenEstimator

__all__ = [
    "TokenEstimator",
]
