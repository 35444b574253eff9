#!/usr/bin/env python3
# stackcalc_errors.py
#
# Erreurs typées du calculateur.
# - une seule racine CalcError (RuntimeError)
# - la première erreur interrompt le run complet ; aucune reprise ici
# - c'est la couche CLI / REPL qui décide quoi afficher et comment sortir

from __future__ import annotations

import sys
import unittest
from typing import Any


class CalcError(RuntimeError): ...


class DivisionByZeroError(CalcError):
    def __init__(self) -> None:
        super().__init__("Division by zero")


class MissingOperandError(CalcError):
    def __init__(self) -> None:
        super().__init__("Operation needs an operand but stack is empty")


class BlockNoResultError(CalcError):
    def __init__(self) -> None:
        super().__init__("Block left no result on the stack")


class WrongTypeOperandError(CalcError):
    """Operand popped from the stack is not of the expected kind."""

    def __init__(self, value: Any, expected: str) -> None:
        # import local : stackcalc_values importe ce module
        from stackcalc_values import display, kind_of
        self.value = value
        self.expected = expected
        super().__init__(
            f"Operand has a wrong type: got {display(value)} ({kind_of(value).value}), expected {expected}"
        )


class WordParseError(CalcError):
    def __init__(self, word: str) -> None:
        self.word = word
        super().__init__(f"Could not parse word as number or operation: {word}")


class NumericOverflowError(CalcError):
    def __init__(self, value: Any) -> None:
        self.value = value
        super().__init__(f"Number too large to convert: {value}")


class UnknownWordError(CalcError):
    def __init__(self, word: str) -> None:
        self.word = word
        super().__init__(f"Unknown word: {word}")


class TestErrors(unittest.TestCase):
    def test_all_kinds_are_calc_errors(self):
        for err in (DivisionByZeroError(), MissingOperandError(), BlockNoResultError(),
                    WordParseError("x"), NumericOverflowError(10 ** 400), UnknownWordError("x")):
            self.assertIsInstance(err, CalcError)
            self.assertIsInstance(err, RuntimeError)

    def test_wrong_type_carries_value_and_expected(self):
        err = WrongTypeOperandError([1, 2], "int or float")
        self.assertEqual(err.value, [1, 2])
        self.assertEqual(err.expected, "int or float")
        self.assertIn("[1, 2] len: 2", str(err))
        self.assertIn("vector", str(err))

    def test_messages_name_the_offending_word(self):
        self.assertIn("frobnicate", str(WordParseError("frobnicate")))
        self.assertEqual(UnknownWordError("nope").word, "nope")


if __name__ == "__main__":
    if "--test" in sys.argv:
        sys.argv = [sys.argv[0]]
        unittest.main()
