"""lmgraph Package.

Conversion of ARPA backoff n-gram language models into weighted
finite-state transducers for decoding graphs.
"""

__version__ = "0.1.0"
__author__ = "ML/NLP Engineer"

from .errors import LmFormatError
from .lm import ArpaReader, NgramRecord, NgramSource, NgramTable
from .wfst import LmFstConverter, arpa_to_fst, table_to_fst, build_language_model

__all__ = [
    "LmFormatError",
    "ArpaReader",
    "NgramRecord",
    "NgramSource",
    "NgramTable",
    "LmFstConverter",
    "arpa_to_fst",
    "table_to_fst",
    "build_language_model",
]
