"""Command line interface.

    lmgraph arpa2fst lm.arpa.gz G.fst
    lmgraph build-table lm.arpa lm.npz --inverted
    lmgraph arpa2fst lm.npz G.fst --write-symbols words.txt
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from .config import get_config, load_config, setup_logging
from .errors import LmFormatError
from .lm.table import NgramTable
from .wfst.build_g import arpa_to_fst, table_to_fst

logger = logging.getLogger(__name__)


def get_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lmgraph",
        description="Convert ARPA backoff language models to FSTs.")
    parser.add_argument('--config', type=str, default=None,
                        help="JSON configuration file")
    parser.add_argument('--log-level', type=str, default=None,
                        help="Logging level (overrides the configuration)")
    subparsers = parser.add_subparsers(dest='command', required=True)

    convert = subparsers.add_parser(
        'arpa2fst', help="Convert an ARPA file or n-gram table to G.fst")
    convert.add_argument('model', type=str,
                         help="ARPA file (.arpa, .arpa.gz) or n-gram table (.npz)")
    convert.add_argument('output', type=str, help="Output FST path")
    convert.add_argument('--bos', type=str, default=None,
                         help="The begin symbol")
    convert.add_argument('--eos', type=str, default=None,
                         help="The end symbol")
    convert.add_argument('--base10', action='store_true',
                         help="Keep log10 costs instead of converting to natural log")
    convert.add_argument('--no-arc-sort', action='store_true',
                         help="Do not sort arcs by input label")
    convert.add_argument('--write-symbols', type=str, default=None,
                         help="Write the word symbol table here (default: "
                              "output.symbols_name next to OUTPUT, if "
                              "output.write_symbols is set)")
    convert.add_argument('--encoding', type=str, default=None,
                         help="Text encoding of the ARPA file")
    convert.add_argument('--progress', action='store_true',
                         help="Show a progress bar")

    table = subparsers.add_parser(
        'build-table', help="Compile an ARPA file into an n-gram table")
    table.add_argument('arpa', type=str, help="The ARPA file")
    table.add_argument('output', type=str, help="Output .npz path")
    table.add_argument('--inverted', action='store_true',
                       help="Store n-grams newest word first")
    table.add_argument('--encoding', type=str, default=None,
                       help="Text encoding of the ARPA file")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = get_args(argv)

    config = load_config(args.config) if args.config else get_config()
    if args.log_level:
        config['logging']['level'] = args.log_level
    setup_logging(config)

    if args.encoding:
        config['lm']['encoding'] = args.encoding

    try:
        if args.command == 'arpa2fst':
            if args.bos:
                config['lm']['bos'] = args.bos
            if args.eos:
                config['lm']['eos'] = args.eos
            if args.base10:
                config['lm']['natural_log'] = False
            if args.no_arc_sort:
                config['output']['arc_sort'] = False

            if args.model.endswith('.npz'):
                g_fst = table_to_fst(args.model, args.output, config,
                                     progress=args.progress)
            else:
                g_fst = arpa_to_fst(args.model, args.output, config,
                                    progress=args.progress)
            logger.info(f"Language model FST saved to: {args.output}")

            symbols_path = args.write_symbols
            if symbols_path is None and config['output']['write_symbols']:
                symbols_path = os.path.join(os.path.dirname(args.output),
                                            config['output']['symbols_name'])
            if symbols_path:
                g_fst.input_symbols().write_text(symbols_path)
                logger.info(f"Word symbols saved to: {symbols_path}")

        elif args.command == 'build-table':
            lm_config = config['lm']
            table = NgramTable.from_arpa(
                args.arpa,
                inverted=args.inverted,
                bos=lm_config['bos'],
                eos=lm_config['eos'],
                max_warnings=lm_config['max_warnings'],
                encoding=lm_config['encoding']
            )
            table.save(args.output)

    except (LmFormatError, OSError, UnicodeDecodeError, LookupError) as e:
        logger.error(str(e))
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
