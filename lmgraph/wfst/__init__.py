"""WFST modules for n-gram language models.

This package builds the grammar FST (G) of a decoding graph:
- converter: backoff FST construction from n-gram records
- build_g: ARPA / n-gram table to G.fst pipeline
"""

from .converter import LmFstConverter, create_lm_fst
from .build_g import (
    arpa_to_fst,
    table_to_fst,
    build_language_model,
    load_language_model,
)

__all__ = [
    "LmFstConverter",
    "create_lm_fst",
    "arpa_to_fst",
    "table_to_fst",
    "build_language_model",
    "load_language_model",
]
