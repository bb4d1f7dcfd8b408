"""Build Language Model FST (G).

This module implements:
1. ARPA and n-gram table conversion to a backoff FST
2. Arc sorting for composition
3. Writing G.fst with its word symbol table
"""

import logging
import os
from typing import Dict, Optional, Union

import pynini
from pynini import Fst

from ..config import get_config, save_config
from ..lm.arpa import ArpaReader, open_arpa
from ..lm.records import NgramSource
from ..lm.table import NgramTable
from .converter import LmFstConverter, create_lm_fst

logger = logging.getLogger(__name__)


def source_to_fst(source: NgramSource,
                  config: Optional[Dict] = None,
                  progress: bool = False) -> Fst:
    """Convert an n-gram source to a language model FST.

    Args:
        source: N-gram source (ARPA reader or n-gram table)
        config: Configuration, see lmgraph.config.DEFAULT_CONFIG
        progress: Show a progress bar

    Returns:
        Language model FST
    """
    config = get_config(config)
    lm_config = config['lm']

    lm_fst = create_lm_fst(lm_config['epsilon'])
    converter = LmFstConverter(
        lm_fst,
        natural_log=lm_config['natural_log'],
        bos=lm_config['bos'],
        eos=lm_config['eos'],
        epsilon=lm_config['epsilon']
    )
    converter.convert(source, progress=progress)

    if config['output']['arc_sort']:
        lm_fst.arcsort(sort_type="ilabel")

    summary = fst_summary(lm_fst)
    logger.info(
        f"G has {summary['num_states']} states, {summary['num_arcs']} arcs "
        f"and {summary['num_final']} final states"
    )
    return lm_fst


def arpa_to_fst(arpa_file: str,
                output_fst: Optional[str] = None,
                config: Optional[Dict] = None,
                progress: bool = False) -> Fst:
    """Convert ARPA format language model to FST.

    Args:
        arpa_file: Path to ARPA file, optionally gzipped
        output_fst: Output FST path, not written if None
        config: Configuration dictionary
        progress: Show a progress bar

    Returns:
        Language model FST
    """
    config = get_config(config)
    lm_config = config['lm']

    with open_arpa(arpa_file, encoding=lm_config['encoding']) as f:
        reader = ArpaReader(
            f,
            bos=lm_config['bos'],
            eos=lm_config['eos'],
            max_warnings=lm_config['max_warnings']
        )
        lm_fst = source_to_fst(reader, config, progress=progress)

    if reader.num_skipped:
        logger.warning(f"Skipped {reader.num_skipped} n-grams with misplaced "
                       f"{lm_config['bos']} or {lm_config['eos']}")

    if output_fst:
        lm_fst.write(output_fst)

    return lm_fst


def table_to_fst(table: Union[str, NgramTable],
                 output_fst: Optional[str] = None,
                 config: Optional[Dict] = None,
                 progress: bool = False) -> Fst:
    """Convert a compressed n-gram table to FST.

    Args:
        table: N-gram table or path to a saved table
        output_fst: Output FST path, not written if None
        config: Configuration dictionary
        progress: Show a progress bar

    Returns:
        Language model FST
    """
    if isinstance(table, str):
        table = NgramTable.load(table)

    lm_fst = source_to_fst(table, config, progress=progress)

    if output_fst:
        lm_fst.write(output_fst)

    return lm_fst


def build_language_model(model_path: str,
                         output_dir: str,
                         config: Optional[Dict] = None,
                         progress: bool = False) -> str:
    """Build G.fst from an ARPA file or n-gram table.

    Writes G.fst, the word symbol table and the configuration used to
    output_dir.

    Args:
        model_path: ARPA file (.arpa, .arpa.gz) or n-gram table (.npz)
        output_dir: Output directory
        config: Configuration dictionary
        progress: Show a progress bar

    Returns:
        Path to G.fst
    """
    config = get_config(config)
    os.makedirs(output_dir, exist_ok=True)

    if model_path.endswith('.npz'):
        g_fst = table_to_fst(model_path, config=config, progress=progress)
    else:
        g_fst = arpa_to_fst(model_path, config=config, progress=progress)

    g_fst_path = os.path.join(output_dir, config['output']['fst_name'])
    g_fst.write(g_fst_path)

    if config['output']['write_symbols']:
        symbols_path = os.path.join(output_dir, config['output']['symbols_name'])
        g_fst.input_symbols().write_text(symbols_path)
        logger.info(f"Word symbols saved to: {symbols_path}")

    save_config(config, os.path.join(output_dir, "config.json"))

    logger.info(f"Language model FST saved to: {g_fst_path}")
    return g_fst_path


def load_language_model(g_fst_path: str) -> Fst:
    """Load a G FST written by build_language_model."""
    return Fst.read(g_fst_path)


def fst_summary(lm_fst: Fst) -> Dict[str, int]:
    """Count states, arcs and final states of an FST.

    Args:
        lm_fst: FST to summarize

    Returns:
        Dictionary with num_states, num_arcs and num_final
    """
    zero = pynini.Weight.zero(lm_fst.weight_type())
    num_arcs = 0
    num_final = 0
    for state in lm_fst.states():
        num_arcs += lm_fst.num_arcs(state)
        if lm_fst.final(state) != zero:
            num_final += 1

    return {
        'num_states': lm_fst.num_states(),
        'num_arcs': num_arcs,
        'num_final': num_final,
    }
