"""N-gram language model sources.

Two interchangeable sources feed the FST converter:
- ArpaReader: streaming reader for ARPA text files
- NgramTable: traversal over a packed n-gram trie
"""

from .records import NgramRecord, NgramSource
from .arpa import ArpaReader, open_arpa
from .table import NgramTable

__all__ = [
    "NgramRecord",
    "NgramSource",
    "ArpaReader",
    "open_arpa",
    "NgramTable",
]
