#!/usr/bin/env python3
# stackcalc_core.py
#
# Évaluateur mot-à-mot du calculateur postfixé.
# - pile de valeurs D (LIFO) + Scope + pile de frames en attente
# - frame Reading    : capture d'un bloc { ... } (niveau d'imbrication)
# - frame Collecting : littéral [ ... ] évalué par un sous-Calc isolé
# - inactif (pas de frame) : quote, ouverture de frame, dictionnaire, littéral
#
# Les primitives vivent dans stackcalc_builtins (mixin CalcBuiltins).

from __future__ import annotations

import io
import logging
import sys
import unittest
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, TextIO, Union

from stackcalc_builtins import CalcBuiltins
from stackcalc_dict import Builtin, Operation, Scope
from stackcalc_errors import (
    DivisionByZeroError,
    MissingOperandError,
    UnknownWordError,
    WordParseError,
)
from stackcalc_values import (
    BLOCK_CLOSE,
    BLOCK_OPEN,
    QUOTE,
    VECTOR_CLOSE,
    VECTOR_OPEN,
    Block,
    QuotedWord,
    clone,
    display,
    parse_literal,
)

log = logging.getLogger(__name__)


@dataclass
class Reading:
    block: List[str] = field(default_factory=list)
    level: int = 0


@dataclass
class Collecting:
    calc: "Calc"


Frame = Union[Reading, Collecting]


class Calc(CalcBuiltins):
    """
    Word-at-a-time evaluator.

    Tokens are fed one by one through ``run_one``. An idle evaluator
    dispatches them; otherwise the top pending frame captures them.
    """

    def __init__(self, scope: Optional[Scope] = None, *,
                 out: Optional[TextIO] = None, inp: Optional[TextIO] = None) -> None:
        self.D: List[Any] = []
        self.scope: Scope = scope if scope is not None else Scope.with_builtins()
        self._frames: List[Frame] = []
        self.out: TextIO = out if out is not None else sys.stdout
        self.inp: TextIO = inp if inp is not None else sys.stdin

    def sub_calc(self) -> "Calc":
        return Calc(self.scope.child(), out=self.out, inp=self.inp)

    @property
    def is_idle(self) -> bool:
        return not self._frames

    def emit(self, text: str) -> None:
        """Point central de sortie texte."""
        self.out.write(text)

    # --- Main token interpreter ----------------------------------
    def run(self, words: Iterable[str]) -> None:
        for word in words:
            self.run_one(word)

    def run_one(self, word: str) -> None:
        if not self._frames:
            self._execute_word(word)
            return

        frame = self._frames.pop()
        if isinstance(frame, Reading):
            log.debug("reading %s", word)
            if word == BLOCK_CLOSE and frame.level == 0:
                self.D.append(Block(tuple(frame.block)))
                return
            frame.block.append(word)
            if word == BLOCK_CLOSE:
                frame.level -= 1
            elif word == BLOCK_OPEN:
                frame.level += 1
            self._frames.append(frame)
            return

        log.debug("collecting %s", word)
        child = frame.calc
        # un littéral encore ouvert dans l'enfant reçoit ] et arg lui-même
        if child.is_idle:
            if word == VECTOR_CLOSE:
                self.D.append(child.D)
                return
            if self.scope.lookup(word) is Builtin.ARG:
                self._take_arg(child)
                self._frames.append(frame)
                return
        child.run_one(word)
        self._frames.append(frame)

    def _take_arg(self, child: "Calc") -> None:
        # une seule frame par Calc : un vecteur imbriqué vit dans l'enfant,
        # dont la pile D est alors celle du vecteur englobant
        if not self.D:
            raise MissingOperandError()
        child.D.append(self.D.pop())

    def _execute_word(self, word: str) -> None:
        log.debug("executing %s", word)
        if word.startswith(QUOTE):
            self.D.append(QuotedWord(word[len(QUOTE):]))
            return
        if word == BLOCK_OPEN:
            self._frames.append(Reading())
            return
        if word == VECTOR_OPEN:
            self._frames.append(Collecting(self.sub_calc()))
            return
        op = self.scope.lookup(word)
        if op is not None:
            self.execute_operation(op)
            return
        val = parse_literal(word)
        if val is None:
            raise WordParseError(word)
        self.D.append(val)

    def execute_operation(self, op: Operation) -> None:
        if isinstance(op, Builtin):
            self.run_builtin(op)
        elif isinstance(op, Block):
            log.debug("executing block: %r", op)
            self.run(op.words)
        else:
            self.D.append(clone(op))

    # --- Output ----------------------------------------------------
    def print_stack(self) -> None:
        for val in self.D:
            self.emit(display(val) + "\n")

    def list_available_words(self) -> None:
        for word, aliases in self.scope.available_words().items():
            if aliases:
                self.emit(f"{word} (aliases: {', '.join(aliases)})\n")
            else:
                self.emit(f"{word}\n")


class TestCalc(unittest.TestCase):
    def setUp(self) -> None:
        self.out = io.StringIO()
        self.calc = Calc(out=self.out)

    def feed(self, src: str) -> List[Any]:
        self.calc.run(src.split())
        return self.calc.D

    # scénarios de référence
    def test_scenarios(self):
        cases = [
            (["2", "3", "add"], [5]),
            (["1", "2", "3", "roll3"], [2, 1, 3]),
            (["5", "dup", "mul"], [25]),
            (["[", "1", "2", "3", "]"], [[1, 2, 3]]),
            (["5", "{", "1", "add", "}", "apply"], [6]),
        ]
        for tokens, expected in cases:
            calc = Calc(out=self.out)
            calc.run(tokens)
            self.assertEqual(calc.D, expected, tokens)

    def test_div_by_zero_leaves_nothing(self):
        with self.assertRaises(DivisionByZeroError):
            self.calc.run(["10", "0", "div"])
        self.assertEqual(self.calc.D, [])

    def test_add_for_many_integers(self):
        for a, b in [(0, 0), (-5, 3), (2 ** 70, -(2 ** 69)), (123, 456)]:
            calc = Calc()
            calc.run([str(a), str(b), "add"])
            self.assertEqual(calc.D, [a + b])
            self.assertIs(type(calc.D[0]), int)

    def test_quoted_word(self):
        self.assertEqual(self.feed(",add ,foo"), [QuotedWord("add"), QuotedWord("foo")])

    def test_block_tokens_are_verbatim(self):
        self.feed("{ 1 { 2 ,x } [ 3 ] nonsense }")
        self.assertEqual(self.calc.D, [Block(("1", "{", "2", ",x", "}", "[", "3", "]", "nonsense"))])
        self.assertTrue(self.calc.is_idle)

    def test_block_is_validated_at_run_time(self):
        self.feed("{ nonsense }")
        with self.assertRaises(WordParseError) as cm:
            self.feed("apply")
        self.assertEqual(cm.exception.word, "nonsense")

    def test_pending_block_keeps_state(self):
        self.feed("{ 1")
        self.assertFalse(self.calc.is_idle)
        self.assertEqual(self.calc.D, [])
        self.feed("add }")
        self.assertEqual(self.calc.D, [Block(("1", "add"))])

    def test_vector_contents_are_evaluated_in_isolation(self):
        self.assertEqual(self.feed("7 [ 1 2 add 4 ]"), [7, [3, 4]])
        self.calc.D.clear()
        self.assertRaises(MissingOperandError, self.feed, "7 [ add ]")

    def test_nested_literals(self):
        self.assertEqual(self.feed("[ [ 1 ] [ 2 3 ] [ ] ]"), [[[1], [2, 3], []]])
        self.calc.D.clear()
        self.assertEqual(self.feed("[ { 1 add } 2 ]"), [[Block(("1", "add")), 2]])

    def test_arg_moves_value_into_vector(self):
        self.assertEqual(self.feed("1 5 [ arg 10 ]"), [1, [5, 10]])
        self.calc.D.clear()
        self.assertEqual(self.feed("1 2 [ arg arg ]"), [[2, 1]])
        self.calc.D.clear()
        self.assertRaises(MissingOperandError, self.feed, "[ arg ]")

    def test_arg_in_nested_vector_reads_enclosing_vector(self):
        self.assertEqual(self.feed("5 [ 1 [ arg ] ]"), [5, [[1]]])
        self.calc.D.clear()
        self.assertEqual(self.feed("5 [ 1 2 [ arg arg [ arg ] ] ]"), [5, [[2, [1]]]])
        self.calc.D.clear()
        self.assertRaises(MissingOperandError, self.feed, "5 [ [ arg ] ]")

    def test_arg_in_block_inside_vector_is_captured(self):
        self.assertEqual(self.feed("[ { arg } ]"), [[Block(("arg",))]])

    def test_arg_through_alias(self):
        self.assertEqual(self.feed(",take ,arg alias 3 [ take 4 ]"), [[3, 4]])

    def test_arg_outside_vector_is_noop(self):
        self.assertEqual(self.feed("1 arg"), [1])

    def test_vector_scope_is_discarded(self):
        self.feed("[ ,x 1 def x ]")
        self.assertEqual(self.calc.D, [[1]])
        self.assertRaises(WordParseError, self.feed, "x")

    def test_bound_block_runs_inline(self):
        self.assertEqual(self.feed(",inc { 1 add } def 41 inc"), [42])
        self.calc.D.clear()
        self.assertEqual(self.feed(",pair { 1 2 } def pair"), [1, 2])

    def test_bound_vector_is_cloned(self):
        self.feed(",v [ 1 2 ] def v v")
        a, b = self.calc.D
        self.assertEqual(a, [1, 2])
        self.assertIsNot(a, b)
        self.assertIsNot(a, self.calc.scope.lookup("v"))

    def test_recursive_definition(self):
        src = ",fact { dup 1 min 1 cmp { pop 1 } { dup 1 sub fact mul } if } def 5 fact"
        self.assertEqual(self.feed(src), [120])

    def test_integers_beyond_str_digit_limit(self):
        self.assertEqual(self.feed("1" * 5000), [int("1" * 5000)])
        self.calc.D.clear()
        self.feed("2 { dup mul } 14 repeat")
        self.assertEqual(self.calc.D, [2 ** (2 ** 14)])
        self.calc.print_stack()
        self.assertEqual(self.out.getvalue(), str(2 ** (2 ** 14)) + "\n")

    def test_dictionary_before_literal(self):
        self.assertEqual(self.feed(",1 2 def 1 1 add"), [4])

    def test_unknown_word(self):
        with self.assertRaises(WordParseError) as cm:
            self.feed("1 frobnicate 2")
        self.assertEqual(cm.exception.word, "frobnicate")
        self.assertEqual(self.calc.D, [1])

    def test_alias_resolves_across_nested_scopes(self):
        root = Scope.with_builtins()
        root.insert("double", Block(("2", "mul")))
        calc = Calc(root.child().child())
        calc.run(",twice ,double alias 21 twice".split())
        self.assertEqual(calc.D, [42])
        self.assertIsNone(root.lookup("twice"))

    def test_alias_rejects_forward_reference(self):
        self.assertRaises(UnknownWordError, self.feed, ",a ,later alias")

    def test_map_and_filter_properties(self):
        vec = [3, -1, 4, 1, -5, 9, 2, 6]
        self.calc.D.append(list(vec))
        self.feed("{ 2 mul } map")
        self.assertEqual(self.calc.D, [[2 * v for v in vec]])
        self.calc.D = [list(vec)]
        self.feed("{ 0 max } filter")
        kept = self.calc.D[0]
        self.assertEqual(kept, [v for v in vec if v > 0])

    def test_print_stack_and_word_listing(self):
        self.feed("1 2.5 [ 1 ] ,q { }")
        self.calc.print_stack()
        self.assertEqual(self.out.getvalue(), "1\n2.5\n[1] len: 1\nq\n<block>\n")
        self.out.truncate(0)
        self.out.seek(0)
        self.feed(",plus ,add alias")
        self.calc.list_available_words()
        lines = self.out.getvalue().splitlines()
        self.assertIn("add (aliases: plus)", lines)
        self.assertIn("dup", lines)
        self.assertNotIn("plus", lines)


if __name__ == "__main__":
    if "--test" in sys.argv:
        sys.argv = [sys.argv[0]]
        unittest.main()
