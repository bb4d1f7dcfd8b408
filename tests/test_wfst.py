"""Tests for G FST building."""

import json
import math
import os
import tempfile

import pytest
import pynini

from lmgraph.config import get_config
from lmgraph.errors import LmFormatError
from lmgraph.lm.table import NgramTable
from lmgraph.wfst.build_g import (
    arpa_to_fst,
    table_to_fst,
    build_language_model,
    load_language_model,
    fst_summary,
)

LN10 = math.log(10)

BIGRAM_ARPA = r"""\data\
ngram 1=3
ngram 2=2

\1-grams:
-0.5 <s> -0.3
-1.2 hello -0.2
-0.8 </s>

\2-grams:
-2.0 <s> hello
-1.0 hello </s>

\end\
"""

TRIGRAM_ARPA = r"""\data\
ngram 1=5
ngram 2=5
ngram 3=3

\1-grams:
-0.5 <s> -0.3
-1.0 a -0.2
-1.1 b -0.25
-1.3 c -0.1
-0.9 </s>

\2-grams:
-0.4 b a -0.1
-0.6 <s> a -0.15
-0.7 a b -0.05
-0.8 b </s>
-0.9 c c -0.2

\3-grams:
-0.2 <s> a b
-0.3 a b </s>
-0.1 a c c

\end\
"""


def write_arpa(tmpdir, text, name="lm.arpa"):
    path = os.path.join(tmpdir, name)
    with open(path, 'w') as f:
        f.write(text)
    return path


def cost(weight) -> float:
    return float(weight.to_string())


def arcs_by_word(lm_fst, state):
    symbols = lm_fst.input_symbols()
    return {
        symbols.find(arc.ilabel): (cost(arc.weight), arc.nextstate)
        for arc in lm_fst.arcs(state)
    }


def structure(lm_fst):
    """States, arcs and final states of an FST as plain values."""
    arcs = []
    finals = []
    for state in lm_fst.states():
        for arc in lm_fst.arcs(state):
            arcs.append((state, arc.ilabel, arc.olabel,
                         round(cost(arc.weight), 4), arc.nextstate))
        if cost(lm_fst.final(state)) != math.inf:
            finals.append((state, cost(lm_fst.final(state))))
    return lm_fst.num_states(), arcs, finals


def arc_multiset(lm_fst):
    symbols = lm_fst.input_symbols()
    return sorted(
        (symbols.find(arc.ilabel), round(cost(arc.weight), 4))
        for state in lm_fst.states()
        for arc in lm_fst.arcs(state)
    )


class TestArpaToFst:
    """Test cases for ARPA conversion."""

    def test_bigram_model(self):
        """Test the full structure of a small bigram model."""
        with tempfile.TemporaryDirectory() as tmpdir:
            g_fst = arpa_to_fst(write_arpa(tmpdir, BIGRAM_ARPA))

        summary = fst_summary(g_fst)
        assert summary == {'num_states': 5, 'num_arcs': 7, 'num_final': 1}

        # start state: only <s>, without cost
        start_arcs = arcs_by_word(g_fst, g_fst.start())
        assert list(start_arcs) == ["<s>"]
        assert start_arcs["<s>"][0] == pytest.approx(0.0)
        bos = start_arcs["<s>"][1]

        # <s> backs off to the unigram state and continues with hello
        bos_arcs = arcs_by_word(g_fst, bos)
        assert bos_arcs["<eps>"][0] == pytest.approx(0.3 * LN10, abs=1e-4)
        assert bos_arcs["hello"][0] == pytest.approx(2.0 * LN10, abs=1e-4)
        unigram = bos_arcs["<eps>"][1]
        hello = bos_arcs["hello"][1]

        unigram_arcs = arcs_by_word(g_fst, unigram)
        assert unigram_arcs["hello"] == (pytest.approx(1.2 * LN10, abs=1e-4), hello)
        assert unigram_arcs["</s>"][0] == pytest.approx(0.8 * LN10, abs=1e-4)
        eos = unigram_arcs["</s>"][1]

        hello_arcs = arcs_by_word(g_fst, hello)
        assert hello_arcs["<eps>"] == (pytest.approx(0.2 * LN10, abs=1e-4), unigram)
        assert hello_arcs["</s>"] == (pytest.approx(1.0 * LN10, abs=1e-4), eos)

        assert cost(g_fst.final(eos)) == pytest.approx(0.0)
        assert g_fst.num_arcs(eos) == 0

    def test_symbols_hold_each_word_once(self):
        """Test that every word is in the symbol tables exactly once."""
        with tempfile.TemporaryDirectory() as tmpdir:
            g_fst = arpa_to_fst(write_arpa(tmpdir, TRIGRAM_ARPA))

        for symbols in (g_fst.input_symbols(), g_fst.output_symbols()):
            words = [symbol for _, symbol in symbols]
            assert sorted(words) == sorted(["<eps>", "<s>", "a", "b", "c", "</s>"])
            assert symbols.find("<eps>") == 0

    def test_base10_costs(self):
        """Test conversion without natural log scaling."""
        config = get_config({'lm': {'natural_log': False}})
        with tempfile.TemporaryDirectory() as tmpdir:
            g_fst = arpa_to_fst(write_arpa(tmpdir, BIGRAM_ARPA), config=config)

        bos = arcs_by_word(g_fst, g_fst.start())["<s>"][1]
        assert arcs_by_word(g_fst, bos)["hello"][0] == pytest.approx(2.0, abs=1e-4)

    def test_configured_encoding(self):
        """Test reading a latin-1 model with the encoding from the configuration."""
        text = BIGRAM_ARPA.replace("hello", "café")
        config = get_config({'lm': {'encoding': 'latin-1'}})
        with tempfile.TemporaryDirectory() as tmpdir:
            path = os.path.join(tmpdir, "lm.arpa")
            with open(path, 'w', encoding='latin-1') as f:
                f.write(text)

            g_fst = arpa_to_fst(path, config=config)

            with pytest.raises(UnicodeDecodeError):
                arpa_to_fst(path)

        assert g_fst.input_symbols().find("café") != -1

    def test_conversion_is_deterministic(self):
        """Test that converting the same model twice gives the same FST."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_arpa(tmpdir, TRIGRAM_ARPA)
            first = arpa_to_fst(path)
            second = arpa_to_fst(path)

        assert structure(first) == structure(second)

    def test_arcs_are_sorted(self):
        """Test ilabel sorting of the output."""
        with tempfile.TemporaryDirectory() as tmpdir:
            g_fst = arpa_to_fst(write_arpa(tmpdir, TRIGRAM_ARPA))

        for state in g_fst.states():
            labels = [arc.ilabel for arc in g_fst.arcs(state)]
            assert labels == sorted(labels)

    def test_no_dead_ends(self):
        """Test that every non-final state has a way forward."""
        with tempfile.TemporaryDirectory() as tmpdir:
            g_fst = arpa_to_fst(write_arpa(tmpdir, TRIGRAM_ARPA))

        zero = pynini.Weight.zero(g_fst.weight_type())
        for state in g_fst.states():
            if g_fst.final(state) == zero:
                assert g_fst.num_arcs(state) > 0

    def test_misplaced_tokens_do_not_fail(self):
        """Test that a line with <s> inside an n-gram is skipped."""
        text = TRIGRAM_ARPA.replace("-0.1 a c c", "-0.1 <s> c <s>")
        with tempfile.TemporaryDirectory() as tmpdir:
            g_fst = arpa_to_fst(write_arpa(tmpdir, text))
            reference = arpa_to_fst(write_arpa(tmpdir, TRIGRAM_ARPA, "ref.arpa"))

        assert fst_summary(g_fst)['num_arcs'] == fst_summary(reference)['num_arcs'] - 1

    def test_fatal_error_writes_nothing(self):
        """Test that a malformed model raises and writes no FST."""
        text = BIGRAM_ARPA.replace("-1.2 hello", "nan hello")
        with tempfile.TemporaryDirectory() as tmpdir:
            output = os.path.join(tmpdir, "G.fst")
            with pytest.raises(LmFormatError, match="Invalid numeric value"):
                arpa_to_fst(write_arpa(tmpdir, text), output)
            assert not os.path.exists(output)

    def test_write_output(self):
        """Test writing the FST during conversion."""
        with tempfile.TemporaryDirectory() as tmpdir:
            output = os.path.join(tmpdir, "G.fst")
            g_fst = arpa_to_fst(write_arpa(tmpdir, BIGRAM_ARPA), output)

            loaded = load_language_model(output)
            assert structure(loaded) == structure(g_fst)


class TestTableToFst:
    """Test cases for n-gram table conversion."""

    @pytest.mark.parametrize("inverted", [False, True])
    def test_same_structure_as_arpa(self, inverted):
        """Test that table and text conversion build the same automaton."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_arpa(tmpdir, TRIGRAM_ARPA)
            from_arpa = arpa_to_fst(path)

            table = NgramTable.from_arpa(path, inverted=inverted)
            table_path = table.save(os.path.join(tmpdir, "lm.npz"))
            from_table = table_to_fst(table_path)

        assert fst_summary(from_table) == fst_summary(from_arpa)
        assert arc_multiset(from_table) == arc_multiset(from_arpa)

    @pytest.mark.parametrize("inverted", [False, True])
    def test_repeated_bigram(self, inverted):
        """Test that a repeated line gives one lexical arc per line on both paths."""
        text = BIGRAM_ARPA.replace("ngram 2=2", "ngram 2=3").replace(
            "-2.0 <s> hello\n", "-2.0 <s> hello\n-1.5 <s> hello\n")
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_arpa(tmpdir, text)
            from_arpa = arpa_to_fst(path)

            table = NgramTable.from_arpa(path, inverted=inverted)
            from_table = table_to_fst(table.save(os.path.join(tmpdir, "lm.npz")))

        assert fst_summary(from_arpa) == {'num_states': 5, 'num_arcs': 8, 'num_final': 1}
        assert fst_summary(from_table) == fst_summary(from_arpa)
        assert arc_multiset(from_table) == arc_multiset(from_arpa)
        assert ("hello", round(1.5 * LN10, 4)) in arc_multiset(from_table)


class TestBuildLanguageModel:
    """Test cases for the G.fst pipeline."""

    def test_outputs(self):
        """Test that G.fst, symbols and configuration are written."""
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_arpa(tmpdir, BIGRAM_ARPA)
            output_dir = os.path.join(tmpdir, "lang")

            g_fst_path = build_language_model(path, output_dir)

            assert g_fst_path == os.path.join(output_dir, "G.fst")
            assert os.path.exists(g_fst_path)
            assert load_language_model(g_fst_path).num_states() == 5

            symbols = pynini.SymbolTable.read_text(os.path.join(output_dir, "words.txt"))
            assert symbols.find("hello") != -1

            with open(os.path.join(output_dir, "config.json")) as f:
                assert json.load(f)['lm']['bos'] == "<s>"

    def test_table_input(self):
        """Test building from a saved n-gram table."""
        with tempfile.TemporaryDirectory() as tmpdir:
            table = NgramTable.from_arpa(write_arpa(tmpdir, BIGRAM_ARPA))
            table_path = table.save(os.path.join(tmpdir, "lm.npz"))

            g_fst_path = build_language_model(table_path, os.path.join(tmpdir, "lang"))
            assert fst_summary(load_language_model(g_fst_path))['num_arcs'] == 7
