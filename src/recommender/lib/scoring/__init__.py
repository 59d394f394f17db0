"""Per-type recommendation scorers.

Scorers are built with their storage and embedding handles at startup (see
``services.build_services``) and looked up by item type.
"""

from .base import ItemScorer, rank
from .papers import PaperScorer
from .posts import PostScorer

__all__ = [
    "ItemScorer",
    "PaperScorer",
    "PostScorer",
    "rank",
]
