"""Convert n-gram records into a backoff language model FST (G).

Suppose we are adding the n-gram "A B C". The arc accepting "C" leaves the
state for history "A B" and enters the state for "A B C", which backs off
with an epsilon arc to "B C". States are keyed by word history so that
every n-gram sharing a context shares its state.

At the highest order no n-gram will ever back off into "A B C", so the arc
enters "B C" directly and no state is created for the full n-gram.

Backoff targets are recorded for every destination state. A state that
never receives an outgoing arc and is not final would be a dead end, so
once all n-grams have been added connect_unused_states() gives each such
state a free epsilon arc to its backoff target.
"""

import logging
import math
from typing import Dict, Iterable, Optional, Sequence, Tuple

import pynini
from pynini import Fst, SymbolTable
from tqdm import tqdm

from ..errors import LmFormatError
from ..lm.records import NgramSource

logger = logging.getLogger(__name__)

History = Tuple[str, ...]

# The empty history, i.e. the unigram (order 0 context) state
EMPTY_HISTORY: History = ()


def create_lm_fst(epsilon: str = "<eps>") -> Fst:
    """Create an empty G FST ready for conversion.

    The FST gets a start state and input/output symbol tables holding only
    the epsilon symbol (id 0).

    Args:
        epsilon: Epsilon symbol

    Returns:
        Empty language model FST
    """
    lm_fst = Fst()

    symbols = SymbolTable()
    symbols.add_symbol(epsilon)
    lm_fst.set_input_symbols(symbols)
    lm_fst.set_output_symbols(symbols)

    start_state = lm_fst.add_state()
    lm_fst.set_start(start_state)

    return lm_fst


class LmFstConverter:
    """Builds G incrementally from n-gram records.

    A converter owns the history -> state and state -> backoff state maps
    of one conversion. The FST is owned by the caller.
    """

    def __init__(self,
                 lm_fst: Optional[Fst] = None,
                 natural_log: bool = True,
                 bos: str = "<s>",
                 eos: str = "</s>",
                 epsilon: str = "<eps>"):
        """Initialize converter.

        Args:
            lm_fst: FST to add states and arcs to, created if None
            natural_log: Convert ARPA log10 values to natural log costs
            bos: Start-of-sentence token
            eos: End-of-sentence token
            epsilon: Epsilon symbol, not allowed as a word
        """
        self.fst = lm_fst if lm_fst is not None else create_lm_fst(epsilon)
        self.natural_log = natural_log
        self.bos = bos
        self.eos = eos
        self.epsilon = epsilon

        self.hist_state: Dict[History, int] = {}
        self.backoff_state: Dict[int, int] = {}

        if self.fst.input_symbols() is None:
            self.fst.set_input_symbols(SymbolTable())
        if self.fst.output_symbols() is None:
            self.fst.set_output_symbols(SymbolTable())
        if self.fst.start() == -1:
            self.fst.set_start(self.fst.add_state())

        self._input_symbols = self.fst.mutable_input_symbols()
        self._output_symbols = self.fst.mutable_output_symbols()
        self._epsilon_label = self._input_symbols.add_symbol(epsilon)
        self._output_symbols.add_symbol(epsilon)

        self._weight_type = self.fst.weight_type()
        self._one = pynini.Weight.one(self._weight_type)
        self._zero = pynini.Weight.zero(self._weight_type)

    def to_cost(self, log_prob: float) -> float:
        """Convert an ARPA log10 value to a tropical cost."""
        if self.natural_log:
            return -log_prob * math.log(10)
        return -log_prob

    def find_state(self, history: Sequence[str]) -> int:
        """Get the state of a history, -1 if it has none."""
        return self.hist_state.get(tuple(history), -1)

    def add_state_for_history(self, history: Sequence[str]) -> Tuple[int, bool]:
        """Get the state of a history, creating it on first use.

        Args:
            history: Context words, oldest first

        Returns:
            Tuple of (state, newly_added)
        """
        history = tuple(history)
        state = self.hist_state.get(history)
        if state is not None:
            return state, False

        state = self.fst.add_state()
        self.hist_state[history] = state
        return state, True

    def is_final(self, state: int) -> bool:
        return self.fst.final(state) != self._zero

    def add_arcs_for_ngram(self,
                           order: int,
                           max_order: int,
                           log_prob: float,
                           log_backoff: float,
                           words: Sequence[str]) -> None:
        """Add the arcs of one n-gram.

        Args:
            order: N-gram order
            max_order: Highest order of the model
            log_prob: Log10 probability of the n-gram
            log_backoff: Log10 backoff weight of the n-gram
            words: N-gram words, oldest first
        """
        words = tuple(words)
        if len(words) != order:
            raise LmFormatError(
                f"{order}-gram has {len(words)} words: {' '.join(words)}")

        word = words[-1]
        if word == self.epsilon:
            raise LmFormatError(
                f"The word {self.epsilon} is not allowed as a word in an ARPA LM")

        prob = pynini.Weight(self._weight_type, self.to_cost(log_prob))
        bow = pynini.Weight(self._weight_type, self.to_cost(log_backoff))

        if order >= 2:
            src, _ = self.add_state_for_history(words[:-1])
            # register every level from 2 to order; the last pair decides
            # the backoff arc
            for i in range(2, order + 1):
                if order != max_order:
                    dst, new_dst = self.add_state_for_history(words[-i:])
                    dbo, _ = self.add_state_for_history(words[-(i - 1):])
                else:
                    dst, new_dst = self.add_state_for_history(words[-(i - 1):])
                    dbo, _ = self.add_state_for_history(
                        words[-(i - 2):] if i > 2 else EMPTY_HISTORY)
                self.backoff_state.setdefault(dst, dbo)
        else:
            if word != self.bos:
                src, _ = self.add_state_for_history(EMPTY_HISTORY)
            else:
                # entering the sentence is certain
                src = self.fst.start()
                prob = self._one
            dst, new_dst = self.add_state_for_history(words)
            dbo, _ = self.add_state_for_history(EMPTY_HISTORY)
            self.backoff_state.setdefault(dst, dbo)

        if word == self.eos:
            self.fst.set_final(dst, self._one)

        ilabel = self._input_symbols.add_symbol(word)
        olabel = self._output_symbols.add_symbol(word)
        self.fst.add_arc(src, pynini.Arc(ilabel, olabel, prob, dst))

        if new_dst and dbo != dst and not self.is_final(dst):
            self.fst.add_arc(dst, pynini.Arc(
                self._epsilon_label, self._epsilon_label, bow, dbo
            ))

    def connect_unused_states(self) -> int:
        """Give dead-end backoff states a free epsilon arc to their backoff state.

        Returns:
            Number of states connected
        """
        connected = 0
        for src, dst in self.backoff_state.items():
            if self.fst.num_arcs(src) == 0 and not self.is_final(src):
                self.fst.add_arc(src, pynini.Arc(
                    self._epsilon_label, self._epsilon_label, self._one, dst
                ))
                connected += 1

        logger.info(f"Connected {connected} states without outgoing arcs")
        return connected

    def convert(self, source: NgramSource, progress: bool = False) -> Fst:
        """Add every record of a source, then connect unused states.

        Args:
            source: N-gram source
            progress: Show a progress bar

        Returns:
            The converter's FST
        """
        records: Iterable = source
        if progress:
            records = tqdm(source, desc="Converting n-grams", unit=" n-grams")

        for record in records:
            self.add_arcs_for_ngram(record.order, source.max_order,
                                    record.log_prob, record.log_backoff,
                                    record.words)

        self.connect_unused_states()
        return self.fst
