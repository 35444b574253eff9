#!/usr/bin/env python3
# stackcalc_values.py
#
# Modèle de valeurs du calculateur.
# - scalaires en objets Python natifs (int, float, bool)
# - Vector = list, Block / QuotedWord = petites dataclasses gelées
# - parsing des littéraux, affichage, coercitions numériques
# - codec JSON pour .save / .load

from __future__ import annotations

import copy
import math
import re
import sys
import unittest
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from stackcalc_errors import NumericOverflowError, WrongTypeOperandError

# entiers en précision arbitraire : pas de limite int <-> str (3.11+)
if hasattr(sys, "set_int_max_str_digits"):
    sys.set_int_max_str_digits(0)

# Syntaxe fixe
BLOCK_OPEN = "{"
BLOCK_CLOSE = "}"
VECTOR_OPEN = "["
VECTOR_CLOSE = "]"
QUOTE = ","

I64_MIN = -(2 ** 63)
I64_MAX = 2 ** 63 - 1

_INT_RE = re.compile(r"[+-]?[0-9]+")
_FLOAT_RE = re.compile(
    r"[+-]?(?:(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?|inf|infinity|nan)",
    re.IGNORECASE,
)


class Kind(Enum):
    UNDEFINED = "undefined"
    BOOL      = "bool"
    INT       = "int"
    FLOAT     = "float"
    VECTOR    = "vector"
    BLOCK     = "block"
    QUOTED    = "quoted word"


class _Undefined(Enum):
    UNDEFINED = "undefined"

    def __repr__(self) -> str:
        return "UNDEFINED"


UNDEFINED = _Undefined.UNDEFINED


@dataclass(frozen=True)
class Block:
    """Unevaluated word tokens, re-interpreted every time the block runs."""
    words: Tuple[str, ...] = ()

    def __repr__(self) -> str:
        return f"Block[{' '.join(self.words)}]"


@dataclass(frozen=True)
class QuotedWord:
    name: str

    def __repr__(self) -> str:
        return f"{QUOTE}{self.name}"


def kind_of(v: Any) -> Kind:
    if v is UNDEFINED: return Kind.UNDEFINED
    # bool avant int : bool est une sous-classe de int
    if isinstance(v, bool): return Kind.BOOL
    if isinstance(v, int): return Kind.INT
    if isinstance(v, float): return Kind.FLOAT
    if isinstance(v, list): return Kind.VECTOR
    if isinstance(v, Block): return Kind.BLOCK
    if isinstance(v, QuotedWord): return Kind.QUOTED
    raise TypeError(f"not a calculator value: {v!r}")


def is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def is_numeric(v: Any) -> bool:
    return is_int(v) or isinstance(v, float)


def parse_literal(token: str) -> Optional[Any]:
    """
    Parse a literal token: integer first (sign + ASCII digits), then float.
    Returns None when the token is not a literal.
    """
    s = token.strip()
    if _INT_RE.fullmatch(s):
        return int(s)
    if _FLOAT_RE.fullmatch(s):
        return float(s)
    return None


def display(v: Any) -> str:
    k = kind_of(v)
    if k is Kind.INT: return str(v)
    if k is Kind.FLOAT: return repr(v)
    if k is Kind.BOOL: return "true" if v else "false"
    if k is Kind.VECTOR:
        return "[" + ", ".join(display(e) for e in v) + f"] len: {len(v)}"
    if k is Kind.BLOCK: return "<block>"
    if k is Kind.QUOTED: return v.name
    return "undefined"


def clone(v: Any) -> Any:
    # seuls les vecteurs sont mutables
    if isinstance(v, list):
        return copy.deepcopy(v)
    return v


# ---- Coercitions ----

def as_int(v: Any) -> int:
    if not is_int(v):
        raise WrongTypeOperandError(v, "int")
    return v


def as_int_cast(v: Any) -> int:
    """Integer, or float truncated toward zero; bounded to the signed 64-bit range."""
    if is_int(v):
        n = v
    elif isinstance(v, float):
        if not math.isfinite(v):
            raise NumericOverflowError(v)
        n = int(v)
    else:
        raise WrongTypeOperandError(v, "int or float")
    if not I64_MIN <= n <= I64_MAX:
        raise NumericOverflowError(n)
    return n


def as_float(v: Any) -> float:
    if not isinstance(v, float):
        raise WrongTypeOperandError(v, "float")
    return v


def as_float_cast(v: Any) -> float:
    if isinstance(v, float):
        return v
    if is_int(v):
        try:
            return float(v)
        except OverflowError:
            raise NumericOverflowError(v) from None
    raise WrongTypeOperandError(v, "int or float")


# ---- Persistance ----

def encode_value(v: Any) -> Dict[str, Any]:
    k = kind_of(v)
    if k is Kind.VECTOR:
        return {"kind": k.value, "value": [encode_value(e) for e in v]}
    if k is Kind.BLOCK:
        return {"kind": k.value, "value": list(v.words)}
    if k is Kind.QUOTED:
        return {"kind": k.value, "value": v.name}
    if k is Kind.UNDEFINED:
        return {"kind": k.value}
    return {"kind": k.value, "value": v}


def decode_value(d: Dict[str, Any]) -> Any:
    k = Kind(d.get("kind"))
    v = d.get("value")
    if k is Kind.UNDEFINED: return UNDEFINED
    if k is Kind.BOOL: return bool(v)
    if k is Kind.INT: return int(v)
    if k is Kind.FLOAT: return float(v)
    if k is Kind.VECTOR: return [decode_value(e) for e in v]
    if k is Kind.BLOCK: return Block(tuple(v))
    return QuotedWord(v)


class TestValues(unittest.TestCase):
    def test_parse_int_before_float(self):
        self.assertEqual(parse_literal("42"), 42)
        self.assertIs(type(parse_literal("42")), int)
        self.assertEqual(parse_literal("-7"), -7)
        self.assertEqual(parse_literal("+7"), 7)
        self.assertEqual(parse_literal("  12  "), 12)
        self.assertEqual(parse_literal("123456789012345678901234567890"), 123456789012345678901234567890)

    def test_parse_float(self):
        self.assertEqual(parse_literal("2.5"), 2.5)
        self.assertEqual(parse_literal("1e3"), 1000.0)
        self.assertIs(type(parse_literal("1e3")), float)
        self.assertEqual(parse_literal(".5"), 0.5)
        self.assertEqual(parse_literal("-3."), -3.0)
        self.assertEqual(parse_literal("inf"), math.inf)
        self.assertTrue(math.isnan(parse_literal("NaN")))

    def test_parse_rejects_words(self):
        for tok in ("add", "", "1_000", "0x10", "1.2.3", "e5", "--1", "١٢"):
            self.assertIsNone(parse_literal(tok), tok)

    def test_display(self):
        self.assertEqual(display(5), "5")
        self.assertEqual(display(2.5), "2.5")
        self.assertEqual(display(5.0), "5.0")
        self.assertEqual(display(True), "true")
        self.assertEqual(display([1, 2.5, [3]]), "[1, 2.5, [3] len: 1] len: 3")
        self.assertEqual(display([]), "[] len: 0")
        self.assertEqual(display(Block(("1", "add"))), "<block>")
        self.assertEqual(display(QuotedWord("dup")), "dup")
        self.assertEqual(display(UNDEFINED), "undefined")

    def test_display_round_trip(self):
        for v in (0, -17, 10 ** 30, 2.5, -0.125, 5.0, 1e300, 1e-7):
            again = parse_literal(display(v))
            self.assertEqual(again, v)
            self.assertIs(type(again), type(v))

    def test_huge_integer_parses_and_displays(self):
        token = "7" * 5000
        n = parse_literal(token)
        self.assertIs(type(n), int)
        self.assertEqual(display(n), token)
        self.assertEqual(len(display(-(10 ** 5000))), 5002)

    def test_kind_of_separates_bool_from_int(self):
        self.assertIs(kind_of(True), Kind.BOOL)
        self.assertIs(kind_of(1), Kind.INT)
        self.assertRaises(TypeError, kind_of, "text")

    def test_coercions(self):
        self.assertEqual(as_float_cast(3), 3.0)
        self.assertEqual(as_int_cast(3.9), 3)
        self.assertEqual(as_int_cast(-3.9), -3)
        self.assertRaises(WrongTypeOperandError, as_int, 3.0)
        self.assertRaises(WrongTypeOperandError, as_int, True)
        self.assertRaises(WrongTypeOperandError, as_float, 3)
        self.assertRaises(WrongTypeOperandError, as_float_cast, QuotedWord("x"))
        self.assertRaises(NumericOverflowError, as_float_cast, 10 ** 400)
        self.assertRaises(NumericOverflowError, as_int_cast, 2 ** 64)
        self.assertRaises(NumericOverflowError, as_int_cast, math.inf)

    def test_clone_copies_vectors(self):
        v = [1, [2]]
        c = clone(v)
        self.assertEqual(c, v)
        self.assertIsNot(c, v)
        self.assertIsNot(c[1], v[1])

    def test_codec(self):
        for v in (1, 2.5, True, UNDEFINED, [1, [2.0]], Block(("dup", "mul")), QuotedWord("x")):
            self.assertEqual(decode_value(encode_value(v)), v)


if __name__ == "__main__":
    if "--test" in sys.argv:
        sys.argv = [sys.argv[0]]
        unittest.main()
