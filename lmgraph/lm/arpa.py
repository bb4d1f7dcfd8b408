r"""Streaming reader for ARPA format backoff language models.

Expects the ARPA format to have:
- a \data\ header followed by "ngram N=M" count lines for orders 1..N
- one \N-grams: section per declared order, in ascending order
- no backoff weights on the highest order

E.G.
    \data\
    ngram 1=3
    ngram 2=1

    \1-grams:
    -0.5 <s> -0.3
    -1.2 hello -0.2
    -0.8 </s>

    \2-grams:
    -0.4 <s> hello

    \end\

Records are produced one line at a time, so models of any size can be fed
to the FST converter without being held in memory.
"""

import gzip
import logging
import math
import re
from typing import Dict, Iterator, List, Optional, TextIO

from ..errors import LmFormatError
from .records import NgramRecord, NgramSource

logger = logging.getLogger(__name__)

# Fields are split on ASCII whitespace only; some encodings use
# non-breaking spaces inside words.
_SPACE = ' \t\r\n\f\v'
_WHITESPACE = re.compile('[ \t\r\n\f\v]+')
_COUNT_LINE = re.compile(r'^\s*ngram\s+(\d+)\s*=\s*(\d+)\s*$')
_NUMBER = re.compile(r'[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?', re.ASCII)
_NON_FINITE = re.compile(r'[-+]?(?:inf|infinity|nan)', re.IGNORECASE)


def open_arpa(path: str, encoding: str = 'utf-8') -> TextIO:
    """Open an ARPA file for reading, decompressing *.gz files.

    Args:
        path: Path to ARPA file
        encoding: Text encoding of the file

    Returns:
        Text stream
    """
    if path.endswith('.gz'):
        return gzip.open(path, 'rt', encoding=encoding)
    return open(path, 'r', encoding=encoding)


def _to_float(field: str) -> float:
    """Convert a decimal ARPA field, rejecting other forms float() accepts."""
    if _NUMBER.fullmatch(field) is None and _NON_FINITE.fullmatch(field) is None:
        raise ValueError(f"could not convert string to float: {field!r}")
    return float(field)


def _is_data_marker(line: str) -> bool:
    return line.strip(_SPACE) == '\\data\\'


def _is_section_boundary(line: str) -> bool:
    line = line.lstrip(_SPACE)
    if not line.startswith('\\'):
        return False
    return '-grams:' in line or '\\end\\' in line


def _parse_section_order(line: str) -> Optional[int]:
    r"""Get N from a "\N-grams:" line, or None if the line is not one."""
    pos1 = line.find('\\')
    pos2 = line.find('-grams:')
    if pos1 < 0 or pos2 < 0 or pos2 <= pos1:
        return None

    order = line[pos1 + 1:pos2].strip(_SPACE)
    if not order.isdigit():
        raise LmFormatError(f"Malformed n-gram section marker: {line.strip()}")
    return int(order)


class ArpaReader(NgramSource):
    """N-gram source reading an ARPA text stream.

    The stream is consumed by the first iteration; a reader cannot be
    iterated twice.
    """

    def __init__(self,
                 fstream: TextIO,
                 bos: str = '<s>',
                 eos: str = '</s>',
                 max_warnings: int = 30):
        """Initialize ARPA reader.

        Args:
            fstream: Text stream positioned anywhere before the \\data\\ line
            bos: Start-of-sentence token
            eos: End-of-sentence token
            max_warnings: Maximum number of warnings to log, negative for all
        """
        self.fstream = fstream
        self.bos = bos
        self.eos = eos
        self.max_warnings = max_warnings

        self.counts: Dict[int, int] = {}
        self.num_warnings = 0
        self.num_skipped = 0
        self._max_order = 0

    @property
    def max_order(self) -> int:
        return self._max_order

    def __iter__(self) -> Iterator[NgramRecord]:
        lines = iter(self.fstream)

        self._find_data_section(lines)
        pending = self._read_counts(lines)
        expected = list(self.counts.keys())

        # pending holds a section or \end\ line that ended the previous loop
        while True:
            if pending is None:
                pending = next(lines, None)
                if pending is None:
                    break

            order = _parse_section_order(pending)
            pending = None
            if order is None:
                continue

            if not expected:
                raise LmFormatError(
                    f"{order}-grams section found but not declared in the "
                    f"\\data\\ header")
            if expected[0] != order:
                raise LmFormatError(
                    f"{order}-grams not specified in ARPA header, or statistics "
                    f"of {expected[0]}-grams not provided")
            expected.pop(0)
            logger.info(f"Processing {order}-grams")

            num_lines = 0
            for line in lines:
                if _is_section_boundary(line):
                    pending = line
                    break
                if not line.strip(_SPACE):
                    continue

                num_lines += 1
                record = self._parse_record(line, order)
                if record is not None:
                    yield record

            if num_lines != self.counts[order]:
                self._warn(
                    f"Header declares {self.counts[order]} {order}-grams "
                    f"but {num_lines} were found")

        if expected:
            raise LmFormatError(
                f"{expected[0]}-grams specified in ARPA header but no "
                f"statistics provided to build FST")

        suppressed = self.num_warnings - self.max_warnings
        if self.max_warnings >= 0 and suppressed > 0:
            logger.warning(f"{suppressed} more warnings were not shown")

    def _find_data_section(self, lines: Iterator[str]) -> None:
        r"""Read lines until the \data\ header is found."""
        for line in lines:
            if _is_data_marker(line):
                return
        raise LmFormatError("No data marker (\\data\\) found in ARPA file")

    def _read_counts(self, lines: Iterator[str]) -> Optional[str]:
        """Read "ngram N=M" lines.

        Returns:
            The line that ended the header, or None at end of stream
        """
        orders: List[int] = []
        last_line = None

        for line in lines:
            if '-grams:' in line or '\\end\\' in line:
                last_line = line
                break

            pos1 = line.find('ngram')
            pos2 = line.find('=')
            if pos1 < 0 or pos2 < 0 or pos2 <= pos1:
                continue

            match = _COUNT_LINE.match(line)
            if match is None:
                raise LmFormatError(
                    f"Malformed n-gram count line in ARPA header: {line.strip()}")
            order, count = int(match.group(1)), int(match.group(2))
            orders.append(order)
            self.counts[order] = count

        if not orders:
            raise LmFormatError("No n-gram orders declared in ARPA header")

        for i, order in enumerate(orders):
            if order != i + 1:
                raise LmFormatError(
                    f"Non-contiguous n-gram orders in ARPA header: "
                    f"{i + 1}-grams not specified (declared {orders})")

        self._max_order = max(orders)
        return last_line

    def _parse_number(self, field: str, order: int, line: str) -> float:
        try:
            value = _to_float(field)
        except ValueError:
            raise LmFormatError(
                f"Bad line in LM file [parsing {order}-grams]: {line.strip()}")
        if not math.isfinite(value):
            raise LmFormatError(
                f"Invalid numeric value (nan or inf) in LM file "
                f"[parsing {order}-grams]: {line.strip()}")
        return value

    def _parse_record(self, line: str, order: int) -> Optional[NgramRecord]:
        """Parse one n-gram line.

        Returns:
            The record, or None if the line was skipped
        """
        fields = _WHITESPACE.split(line.strip(_SPACE))
        log_prob = self._parse_number(fields[0], order, line)

        words = []
        for i in range(order):
            if i + 1 >= len(fields):
                raise LmFormatError(
                    f"Bad line in LM file [parsing {order}-grams]: {line.strip()}")
            word = fields[i + 1]

            # <s> only at the beginning and </s> only at the end
            if order > 1 and ((i != 0 and word == self.bos) or
                              (i != order - 1 and word == self.eos)):
                self._warn(
                    f"{self.bos} is not at the beginning of the n-gram, or "
                    f"{self.eos} is not at the end of the n-gram, skipping "
                    f"it: {line.strip()}")
                self.num_skipped += 1
                return None
            words.append(word)

        log_backoff = 0.0
        rest = fields[order + 1:]
        if order < self.max_order and rest:
            try:
                log_backoff = _to_float(rest[0])
            except ValueError:
                raise LmFormatError(
                    f"Junk '{' '.join(rest)}' at end of line "
                    f"[parsing {order}-grams]: {line.strip()}")
            if not math.isfinite(log_backoff):
                raise LmFormatError(
                    f"Invalid numeric value (nan or inf) in LM file "
                    f"[parsing {order}-grams]: {line.strip()}")
            if len(rest) > 1:
                raise LmFormatError(
                    f"Junk '{' '.join(rest[1:])}' at end of line "
                    f"[parsing {order}-grams]: {line.strip()}")

        return NgramRecord(order, log_prob, tuple(words), log_backoff)

    def _warn(self, message: str) -> None:
        self.num_warnings += 1
        if self.max_warnings < 0 or self.num_warnings <= self.max_warnings:
            logger.warning(message)
