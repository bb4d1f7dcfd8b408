"""Compressed n-gram table.

The table is a packed trie stored level by level in numpy arrays:
- words[l]: word ids of the entries at level l + 1
- probs[l], backoffs[l]: their log probabilities and backoff weights
- bounds[l]: successor bounds, the children of entry i at level l + 1 are
  the entries [bounds[l][i - 1], bounds[l][i]) at level l + 2

A table can store n-grams inverted (newest word at the root), and may hold
prefix entries that are not n-grams of the model themselves. Those carry
NO_PROB and are never emitted.
"""

import logging
import math
from typing import Dict, Iterator, List, Sequence

import numpy as np

from ..errors import LmFormatError
from .arpa import ArpaReader, open_arpa
from .records import NgramRecord, NgramSource

logger = logging.getLogger(__name__)

NO_PROB = float('nan')


class NgramTable(NgramSource):
    """Trie-packed n-gram table usable as an n-gram source."""

    def __init__(self,
                 vocab: Sequence[str],
                 words: List[np.ndarray],
                 probs: List[np.ndarray],
                 backoffs: List[np.ndarray],
                 bounds: List[np.ndarray],
                 inverted: bool = False,
                 pruned: bool = False):
        """Initialize table from packed arrays.

        Args:
            vocab: Word strings indexed by word id
            words: Word ids per level
            probs: Log probabilities per level
            backoffs: Log backoff weights per level
            bounds: Successor bounds for every level but the last
            inverted: Whether n-grams are stored newest word first
            pruned: Whether some entries carry NO_PROB
        """
        self.vocab = list(vocab)
        self.words = words
        self.probs = probs
        self.backoffs = backoffs
        self.bounds = bounds
        self.inverted = inverted
        self.pruned = pruned
        self._check()

    @property
    def max_order(self) -> int:
        return len(self.words)

    @property
    def counts(self) -> Dict[int, int]:
        """Number of n-grams per order, not counting NO_PROB entries."""
        return {
            level + 1: int(np.count_nonzero(~np.isnan(self.probs[level])))
            for level in range(self.max_order)
        }

    def _check(self) -> None:
        if not self.words:
            raise LmFormatError("N-gram table has no levels")
        if len(self.bounds) != self.max_order - 1:
            raise LmFormatError(
                f"N-gram table has {self.max_order} levels but "
                f"{len(self.bounds)} successor bound arrays")

        for level in range(self.max_order):
            size = len(self.words[level])
            if len(self.probs[level]) != size or len(self.backoffs[level]) != size:
                raise LmFormatError(
                    f"Inconsistent array sizes at level {level + 1} of n-gram table")
            if size and int(self.words[level].max()) >= len(self.vocab):
                raise LmFormatError(
                    f"Word id out of vocabulary at level {level + 1} of n-gram table")
            if level < self.max_order - 1:
                bounds = self.bounds[level]
                if len(bounds) != size:
                    raise LmFormatError(
                        f"Inconsistent successor bounds at level {level + 1}")
                end = int(bounds[-1]) if size else 0
                if end != len(self.words[level + 1]) or np.any(np.diff(bounds) < 0):
                    raise LmFormatError(
                        f"Successor bounds at level {level + 1} do not cover "
                        f"level {level + 2}")

    def __iter__(self) -> Iterator[NgramRecord]:
        # dump level by level
        for order in range(1, self.max_order + 1):
            logger.info(f"Processing {order}-grams")
            yield from self._walk([], 1, order, 0, len(self.words[0]))

    def _walk(self,
              prefix: List[int],
              level: int,
              order: int,
              start: int,
              end: int) -> Iterator[NgramRecord]:
        """Walk entries [start, end) of a level, descending until order."""
        words = self.words[level - 1]

        for i in range(start, end):
            ngram = prefix + [int(words[i])]

            if level < order:
                bounds = self.bounds[level - 1]
                isucc = int(bounds[i - 1]) if i > 0 else 0
                esucc = int(bounds[i])
                if isucc < esucc:
                    yield from self._walk(ngram, level + 1, order, isucc, esucc)
                continue

            log_prob = float(self.probs[level - 1][i])
            if self.pruned and math.isnan(log_prob):
                continue

            if self.inverted and len(ngram) > 1:
                ngram = ngram[::-1]

            log_backoff = 0.0
            if order < self.max_order:
                log_backoff = float(self.backoffs[level - 1][i])

            yield NgramRecord(order, log_prob,
                              tuple(self.vocab[w] for w in ngram),
                              log_backoff)

    @classmethod
    def from_records(cls,
                     source: NgramSource,
                     inverted: bool = False) -> 'NgramTable':
        """Build a table from any n-gram source.

        Args:
            source: Source of n-gram records
            inverted: Store n-grams newest word first

        Returns:
            Packed n-gram table
        """
        vocab: Dict[str, int] = {}
        # node: [log_prob, log_backoff, children, repeats]
        root: Dict[int, list] = {}

        for record in source:
            ids = [vocab.setdefault(word, len(vocab)) for word in record.words]
            if inverted:
                ids = ids[::-1]

            children = root
            for word_id in ids[:-1]:
                node = children.get(word_id)
                if node is None:
                    node = children[word_id] = [NO_PROB, 0.0, {}, []]
                children = node[2]

            node = children.get(ids[-1])
            if node is None:
                children[ids[-1]] = [record.log_prob, record.log_backoff, {}, []]
            elif math.isnan(node[0]):
                node[0], node[1] = record.log_prob, record.log_backoff
            else:
                # a repeated n-gram becomes a sibling entry without successors
                node[3].append((record.log_prob, record.log_backoff))

        max_order = source.max_order
        words, probs, backoffs, bounds = [], [], [], []
        level = [root]

        for depth in range(max_order):
            level_words, level_probs, level_backoffs = [], [], []
            level_bounds, next_level = [], []
            total = 0

            for children in level:
                for word_id, (log_prob, log_backoff, successors, repeats) in children.items():
                    level_words.append(word_id)
                    level_probs.append(log_prob)
                    level_backoffs.append(log_backoff)
                    total += len(successors)
                    level_bounds.append(total)
                    next_level.append(successors)

                    for repeat_prob, repeat_backoff in repeats:
                        level_words.append(word_id)
                        level_probs.append(repeat_prob)
                        level_backoffs.append(repeat_backoff)
                        level_bounds.append(total)
                        next_level.append({})

            words.append(np.array(level_words, dtype=np.int32))
            probs.append(np.array(level_probs, dtype=np.float64))
            backoffs.append(np.array(level_backoffs, dtype=np.float64))
            if depth < max_order - 1:
                bounds.append(np.array(level_bounds, dtype=np.int64))
            level = next_level

        # prefixes that never became n-grams themselves
        pruned = any(bool(np.isnan(level_probs).any()) for level_probs in probs)

        id_to_word = [None] * len(vocab)
        for word, word_id in vocab.items():
            id_to_word[word_id] = word

        return cls(id_to_word, words, probs, backoffs, bounds,
                   inverted=inverted, pruned=pruned)

    @classmethod
    def from_arpa(cls,
                  arpa_file: str,
                  inverted: bool = False,
                  bos: str = '<s>',
                  eos: str = '</s>',
                  max_warnings: int = 30,
                  encoding: str = 'utf-8') -> 'NgramTable':
        """Build a table from an ARPA file.

        Args:
            arpa_file: Path to ARPA file (optionally gzipped)
            inverted: Store n-grams newest word first
            bos: Start-of-sentence token
            eos: End-of-sentence token
            max_warnings: Maximum number of reader warnings to log
            encoding: Text encoding of the ARPA file

        Returns:
            Packed n-gram table
        """
        with open_arpa(arpa_file, encoding=encoding) as f:
            reader = ArpaReader(f, bos=bos, eos=eos, max_warnings=max_warnings)
            return cls.from_records(reader, inverted=inverted)

    def save(self, path: str) -> str:
        """Save table as a compressed .npz archive.

        Args:
            path: Output path, ".npz" is appended if missing

        Returns:
            Path to saved table
        """
        if not path.endswith('.npz'):
            path += '.npz'

        arrays = {
            'vocab': np.array(self.vocab, dtype=str),
            'meta': np.array([self.max_order, int(self.inverted), int(self.pruned)],
                             dtype=np.int64),
        }
        for level in range(self.max_order):
            arrays[f'words_{level + 1}'] = self.words[level]
            arrays[f'probs_{level + 1}'] = self.probs[level]
            arrays[f'backoffs_{level + 1}'] = self.backoffs[level]
            if level < self.max_order - 1:
                arrays[f'bounds_{level + 1}'] = self.bounds[level]

        np.savez_compressed(path, **arrays)
        logger.info(f"N-gram table saved to {path}")
        return path

    @classmethod
    def load(cls, path: str) -> 'NgramTable':
        """Load a table written by save().

        Args:
            path: Path to .npz table

        Returns:
            Loaded n-gram table
        """
        with np.load(path, allow_pickle=False) as data:
            try:
                max_order, inverted, pruned = (int(v) for v in data['meta'])
                vocab = [str(w) for w in data['vocab']]
                words = [data[f'words_{l}'] for l in range(1, max_order + 1)]
                probs = [data[f'probs_{l}'] for l in range(1, max_order + 1)]
                backoffs = [data[f'backoffs_{l}'] for l in range(1, max_order + 1)]
                bounds = [data[f'bounds_{l}'] for l in range(1, max_order)]
            except KeyError as e:
                raise LmFormatError(f"{path} is not an n-gram table: {e}")

        return cls(vocab, words, probs, backoffs, bounds,
                   inverted=bool(inverted), pruned=bool(pruned))
