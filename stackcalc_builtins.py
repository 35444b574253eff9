#!/usr/bin/env python3
# stackcalc_builtins.py
#
# Primitives du calculateur, écrites contre le contrat d'accès à la pile de Calc.
# - dépilement dans l'ordre inverse des opérandes déclarés (sommet = dernier opérande)
# - pas de transaction : un opérande déjà dépilé est perdu si le suivant est invalide
# - map / filter / fold / fold1 isolent le bloc dans un sous-évaluateur ;
#   repeat / apply / if le jouent directement sur la pile de l'appelant
#
# Les tests de ce module passent par Calc (stackcalc_core).

from __future__ import annotations

import logging
import math
import sys
import unittest
from typing import Any, Callable, Dict, List

from stackcalc_dict import Builtin
from stackcalc_errors import (
    BlockNoResultError,
    DivisionByZeroError,
    MissingOperandError,
    UnknownWordError,
    WrongTypeOperandError,
)
from stackcalc_values import (
    Block,
    QuotedWord,
    as_float,
    as_float_cast,
    as_int,
    as_int_cast,
    clone,
    display,
    is_int,
    is_numeric,
    parse_literal,
)

log = logging.getLogger(__name__)


# ---- Math flottante, sémantique IEEE-754 (nan / inf plutôt qu'exceptions) ----

def _ieee(fn: Callable[..., float], *args: float) -> float:
    try:
        return fn(*args)
    except OverflowError:
        return math.inf
    except ValueError:
        return math.nan


def _ln(x: float) -> float:
    if x == 0.0:
        return -math.inf
    return _ieee(math.log, x)


def _log(x: float, base: float) -> float:
    num, den = _ln(x), _ln(base)
    if den == 0.0:
        if num == 0.0 or math.isnan(num):
            return math.nan
        return math.copysign(math.inf, num)
    return num / den


def _pow(x: float, y: float) -> float:
    try:
        return math.pow(x, y)
    except OverflowError:
        odd = y.is_integer() and int(y) % 2 == 1
        return -math.inf if (x < 0 and odd) else math.inf
    except ValueError:
        # 0 ** négatif
        if x == 0.0:
            return math.copysign(math.inf, x) if y.is_integer() and int(y) % 2 == 1 else math.inf
        return math.nan


def _truthy(v: Any) -> bool:
    # un flottant non nul ne compte pas comme vrai
    return (is_int(v) and v != 0) or v is True


class CalcBuiltins:
    """
    Builtin handlers mixed into Calc.

    Expects the host class to provide ``D`` (the value stack), ``scope``,
    ``inp``, ``emit``, ``run``, ``run_one`` and ``sub_calc``.
    """

    D: List[Any]

    def run_builtin(self, b: Builtin) -> None:
        _HANDLERS[b](self)

    # --- operand access ---
    def get_operand(self) -> Any:
        if not self.D:
            raise MissingOperandError()
        return self.D.pop()

    def get_int(self) -> int:
        return as_int(self.get_operand())

    def get_int_cast(self) -> int:
        return as_int_cast(self.get_operand())

    def get_float(self) -> float:
        return as_float(self.get_operand())

    def get_float_cast(self) -> float:
        return as_float_cast(self.get_operand())

    def get_block(self) -> Block:
        v = self.get_operand()
        if not isinstance(v, Block):
            raise WrongTypeOperandError(v, "block")
        return v

    def get_vector(self) -> List[Any]:
        v = self.get_operand()
        if not isinstance(v, list):
            raise WrongTypeOperandError(v, "vector")
        return v

    def get_word(self) -> str:
        v = self.get_operand()
        if not isinstance(v, QuotedWord):
            raise WrongTypeOperandError(v, "quoted word")
        return v.name

    # --- Arithmetic ---
    def _binop(self, op: Callable[[Any, Any], Any]) -> None:
        y = self.get_operand()
        x = self.get_operand()
        if is_int(x) and is_int(y):
            self.D.append(op(x, y))
            return
        if not is_numeric(x):
            raise WrongTypeOperandError(x, "int or float")
        if not is_numeric(y):
            raise WrongTypeOperandError(y, "int or float")
        self.D.append(op(as_float_cast(x), as_float_cast(y)))

    def _unary_float(self, fn: Callable[[float], float]) -> None:
        x = self.get_float()
        self.D.append(fn(x))

    def _binary_float(self, fn: Callable[[float, float], float]) -> None:
        y = self.get_float()
        x = self.get_float()
        self.D.append(fn(x, y))

    def builtin_div(self) -> None:
        y = self.get_float_cast()
        x = self.get_float_cast()
        if y == 0.0:
            raise DivisionByZeroError()
        self.D.append(x / y)

    def builtin_sum(self) -> None:
        total = 0.0
        for v in self.get_vector():
            if is_numeric(v):
                total += as_float_cast(v)
        self.D.append(total)

    # --- Comparisons (ints only) ---
    def builtin_min(self) -> None:
        a = self.get_int()
        b = self.get_int()
        self.D.append(min(a, b))

    def builtin_max(self) -> None:
        a = self.get_int()
        b = self.get_int()
        self.D.append(max(a, b))

    def builtin_cmp(self) -> None:
        a = self.get_int()
        b = self.get_int()
        self.D.append((b > a) - (b < a))

    # --- Stack ---
    def builtin_dup(self) -> None:
        v = self.get_operand()
        self.D.append(clone(v))
        self.D.append(v)

    def builtin_pop(self) -> None:
        self.get_operand()

    def builtin_swap(self) -> None:
        a = self.get_operand()
        b = self.get_operand()
        self.D.append(a)
        self.D.append(b)

    def builtin_over(self) -> None:
        a = self.get_operand()
        b = self.get_operand()
        self.D.append(clone(b))
        self.D.append(a)
        self.D.append(b)

    def builtin_roll3(self) -> None:
        a = self.get_operand()
        b = self.get_operand()
        c = self.get_operand()
        self.D.extend([b, c, a])

    # --- Vectors / IO ---
    def builtin_len(self) -> None:
        v = self.get_operand()
        if not isinstance(v, list):
            raise WrongTypeOperandError(v, "vector")
        self.D.append(len(v))

    def builtin_print(self) -> None:
        v = self.get_operand()
        self.emit(display(v) + "\n")

    def builtin_dump(self) -> None:
        for v in self.D:
            self.emit(display(v) + "\n")

    def builtin_stdin(self) -> None:
        vec = []
        for line in self.inp:
            val = parse_literal(line)
            if val is not None:
                vec.append(val)
        self.D.append(vec)

    # --- Functional ---
    def builtin_map(self) -> None:
        block = self.get_block()
        vec = self.get_vector()
        result = []
        for val in vec:
            sub = self.sub_calc()
            sub.D.append(val)
            sub.run(block.words)
            if not sub.D:
                raise BlockNoResultError()
            result.append(sub.D.pop())
        self.D.append(result)

    def builtin_filter(self) -> None:
        block = self.get_block()
        vec = self.get_vector()
        result = []
        for val in vec:
            sub = self.sub_calc()
            sub.D.append(clone(val))
            sub.run(block.words)
            if not sub.D:
                raise BlockNoResultError()
            if _truthy(sub.D.pop()):
                result.append(val)
        self.D.append(result)

    def builtin_fold(self) -> None:
        block = self.get_block()
        init = self.get_operand()
        vec = self.get_vector()
        sub = self.sub_calc()
        sub.D.append(init)
        for val in vec:
            sub.D.append(val)
            sub.run(block.words)
        if not sub.D:
            raise BlockNoResultError()
        self.D.append(sub.D.pop())

    def builtin_fold1(self) -> None:
        block = self.get_block()
        vec = self.get_vector()
        if not vec:
            return
        sub = self.sub_calc()
        sub.D.append(vec[0])
        for val in vec[1:]:
            sub.D.append(val)
            sub.run(block.words)
        if not sub.D:
            raise BlockNoResultError()
        self.D.append(sub.D.pop())

    def builtin_repeat(self) -> None:
        n = self.get_int_cast()
        block = self.get_block()
        for _ in range(n):
            self.run(block.words)

    def builtin_apply(self) -> None:
        op = self.get_operand()
        if isinstance(op, QuotedWord):
            self.run_one(op.name)
        elif isinstance(op, Block):
            self.run(op.words)

    def builtin_if(self) -> None:
        else_branch = self.get_operand()
        then_branch = self.get_operand()
        test = self.get_int()
        branch = then_branch if test != 0 else else_branch
        if isinstance(branch, Block):
            self.run(branch.words)
        else:
            self.D.append(branch)

    # --- Definitions ---
    def builtin_def(self) -> None:
        value = self.get_operand()
        name = self.get_word()
        log.debug("def %s = %r", name, value)
        self.scope.insert(name, value)

    def builtin_alias(self) -> None:
        target = self.get_word()
        name = self.get_word()
        if self.scope.lookup(target) is None:
            raise UnknownWordError(target)
        log.debug("alias %s -> %s", name, target)
        self.scope.insert_alias(name, target)

    def builtin_arg(self) -> None:
        # seulement significatif dans un littéral [ ... ], traité par Calc.run_one
        pass


_HANDLERS: Dict[Builtin, Callable[[CalcBuiltins], None]] = {
    Builtin.ADD:    lambda c: c._binop(lambda x, y: x + y),
    Builtin.SUB:    lambda c: c._binop(lambda x, y: x - y),
    Builtin.MUL:    lambda c: c._binop(lambda x, y: x * y),
    Builtin.DIV:    CalcBuiltins.builtin_div,
    Builtin.MOD:    lambda c: c._binary_float(lambda x, y: _ieee(math.fmod, x, y)),
    Builtin.POW:    lambda c: c._binary_float(_pow),
    Builtin.LOG:    lambda c: c._binary_float(_log),
    Builtin.SQRT:   lambda c: c._unary_float(lambda x: _ieee(math.sqrt, x)),
    Builtin.EXP:    lambda c: c._unary_float(lambda x: _ieee(math.exp, x)),
    Builtin.LN:     lambda c: c._unary_float(_ln),
    Builtin.SIN:    lambda c: c._unary_float(lambda x: _ieee(math.sin, x)),
    Builtin.COS:    lambda c: c._unary_float(lambda x: _ieee(math.cos, x)),
    Builtin.TAN:    lambda c: c._unary_float(lambda x: _ieee(math.tan, x)),
    Builtin.ASIN:   lambda c: c._unary_float(lambda x: _ieee(math.asin, x)),
    Builtin.ACOS:   lambda c: c._unary_float(lambda x: _ieee(math.acos, x)),
    Builtin.ATAN:   lambda c: c._unary_float(lambda x: _ieee(math.atan, x)),
    Builtin.SUM:    CalcBuiltins.builtin_sum,
    Builtin.DUP:    CalcBuiltins.builtin_dup,
    Builtin.POP:    CalcBuiltins.builtin_pop,
    Builtin.SWAP:   CalcBuiltins.builtin_swap,
    Builtin.OVER:   CalcBuiltins.builtin_over,
    Builtin.ROLL3:  CalcBuiltins.builtin_roll3,
    Builtin.MAP:    CalcBuiltins.builtin_map,
    Builtin.FOLD:   CalcBuiltins.builtin_fold,
    Builtin.FOLD1:  CalcBuiltins.builtin_fold1,
    Builtin.FILTER: CalcBuiltins.builtin_filter,
    Builtin.REPEAT: CalcBuiltins.builtin_repeat,
    Builtin.APPLY:  CalcBuiltins.builtin_apply,
    Builtin.DEF:    CalcBuiltins.builtin_def,
    Builtin.ALIAS:  CalcBuiltins.builtin_alias,
    Builtin.ARG:    CalcBuiltins.builtin_arg,
    Builtin.MIN:    CalcBuiltins.builtin_min,
    Builtin.MAX:    CalcBuiltins.builtin_max,
    Builtin.CMP:    CalcBuiltins.builtin_cmp,
    Builtin.IF:     CalcBuiltins.builtin_if,
    Builtin.LEN:    CalcBuiltins.builtin_len,
    Builtin.PRINT:  CalcBuiltins.builtin_print,
    Builtin.DUMP:   CalcBuiltins.builtin_dump,
    Builtin.STDIN:  CalcBuiltins.builtin_stdin,
}


class TestBuiltins(unittest.TestCase):
    def setUp(self) -> None:
        import io
        from stackcalc_core import Calc
        self.out = io.StringIO()
        self.calc = Calc(out=self.out)

    def feed(self, src: str) -> List[Any]:
        self.calc.run(src.split())
        return self.calc.D

    def test_every_builtin_has_a_handler(self):
        self.assertEqual(set(_HANDLERS), set(Builtin))

    def test_arith_int_float_mixed(self):
        self.assertEqual(self.feed("2 3 add"), [5])
        self.assertIs(type(self.calc.D[0]), int)
        self.calc.D.clear()
        self.assertEqual(self.feed("2.5 1.5 add"), [4.0])
        self.calc.D.clear()
        self.assertEqual(self.feed("2 0.5 mul"), [1.0])
        self.assertIs(type(self.calc.D[0]), float)
        self.calc.D.clear()
        self.assertEqual(self.feed("10 4 sub"), [6])
        self.calc.D.clear()
        self.assertEqual(self.feed("99999999999999999999 99999999999999999999 mul"),
                         [99999999999999999999 ** 2])

    def test_arith_type_error(self):
        with self.assertRaises(WrongTypeOperandError) as cm:
            self.feed("1 ,x add")
        self.assertEqual(cm.exception.expected, "int or float")
        self.assertEqual(cm.exception.value, QuotedWord("x"))

    def test_div(self):
        self.assertEqual(self.feed("7 2 div"), [3.5])
        self.calc.D.clear()
        self.assertEqual(self.feed("6 3 div"), [2.0])
        self.assertIs(type(self.calc.D[0]), float)

    def test_div_by_zero_consumes_operands(self):
        for src in ("10 0 div", "10 0.0 div", "1.5 0 div"):
            self.calc.D.clear()
            self.assertRaises(DivisionByZeroError, self.feed, src)
            self.assertEqual(self.calc.D, [])

    def test_float_math(self):
        self.assertEqual(self.feed("9.0 sqrt"), [3.0])
        self.calc.D.clear()
        self.assertEqual(self.feed("2.0 10.0 pow"), [1024.0])
        self.calc.D.clear()
        self.assertAlmostEqual(self.feed("8.0 2.0 log")[0], 3.0)
        self.calc.D.clear()
        self.assertEqual(self.feed("7.5 2.0 mod"), [1.5])
        self.calc.D.clear()
        self.assertEqual(self.feed("0.0 ln"), [-math.inf])
        self.calc.D.clear()
        self.assertTrue(math.isnan(self.feed("-1.0 sqrt")[0]))
        self.calc.D.clear()
        self.assertEqual(self.feed("1000.0 exp"), [math.inf])
        self.calc.D.clear()
        self.assertEqual(self.feed("0.0 sin 0.0 atan"), [0.0, 0.0])

    def test_float_math_is_float_only(self):
        self.assertRaises(WrongTypeOperandError, self.feed, "4 sqrt")

    def test_min_max_cmp(self):
        self.assertEqual(self.feed("3 7 min 3 7 max"), [3, 7])
        self.calc.D.clear()
        # cmp compare le second dépilé au premier
        self.assertEqual(self.feed("1 2 cmp 2 1 cmp 4 4 cmp"), [-1, 1, 0])
        self.assertRaises(WrongTypeOperandError, self.feed, "1.0 2 cmp")

    def test_stack_shuffles(self):
        self.assertEqual(self.feed("1 2 swap"), [2, 1])
        self.calc.D.clear()
        self.assertEqual(self.feed("1 2 over"), [1, 2, 1])
        self.calc.D.clear()
        self.assertEqual(self.feed("1 2 3 roll3"), [2, 1, 3])
        self.calc.D.clear()
        self.assertEqual(self.feed("1 2 pop"), [1])
        self.calc.D.clear()
        self.assertRaises(MissingOperandError, self.feed, "pop")

    def test_dup_clones_vectors(self):
        self.feed("[ 1 2 ] dup")
        a, b = self.calc.D
        self.assertEqual(a, b)
        self.assertIsNot(a, b)

    def test_len(self):
        self.assertEqual(self.feed("[ 1 2 3 ] len [ ] len"), [3, 0])
        self.assertRaises(WrongTypeOperandError, self.feed, "5 len")

    def test_sum(self):
        self.assertEqual(self.feed("[ 1 2.5 ,x 3 ] sum"), [6.5])

    def test_print_and_dump(self):
        self.feed("1 [ 2 3 ] 4 print dump")
        self.assertEqual(self.out.getvalue(), "4\n1\n[2, 3] len: 2\n")
        self.assertEqual(self.calc.D, [1, [2, 3]])

    def test_stdin_skips_unparsable_lines(self):
        import io
        self.calc.inp = io.StringIO("1\nhello\n 2.5 \n\n-3\n")
        self.assertEqual(self.feed("stdin"), [[1, 2.5, -3]])

    def test_map_preserves_order_and_length(self):
        self.assertEqual(self.feed("[ 1 2 3 ] { dup mul } map"), [[1, 4, 9]])
        self.calc.D.clear()
        # seules les valeurs du sommet sont gardées
        self.assertEqual(self.feed("[ 1 2 ] { 0 swap } map"), [[1, 2]])
        self.calc.D.clear()
        self.assertRaises(BlockNoResultError, self.feed, "[ 1 ] { pop } map")

    def test_map_isolates_the_caller_stack(self):
        self.calc.D.append(100)
        self.assertRaises(MissingOperandError, self.feed, "[ 1 ] { pop add } map")

    def test_filter(self):
        self.assertEqual(self.feed("[ 5 1 4 2 3 ] { 3 cmp 1 add } filter"), [[5, 4, 3]])
        self.calc.D.clear()
        # un flottant non nul n'est pas vrai
        self.assertEqual(self.feed("[ 1 2 ] { pop 1.0 } filter"), [[]])
        self.calc.D.clear()
        # l'élément d'origine est conservé, pas le résultat du bloc
        self.assertEqual(self.feed("[ 7 8 ] { pop 42 } filter"), [[7, 8]])

    def test_filter_keeps_true_booleans(self):
        self.calc.scope.insert("yes", True)
        self.calc.scope.insert("no", False)
        self.assertEqual(self.feed("[ 1 2 ] { pop yes } filter [ 1 2 ] { pop no } filter"), [[1, 2], []])

    def test_fold(self):
        self.assertEqual(self.feed("[ 1 2 3 4 ] 0 { add } fold"), [10])
        self.calc.D.clear()
        self.assertEqual(self.feed("[ ] 42 { add } fold"), [42])
        self.calc.D.clear()
        self.assertRaises(BlockNoResultError, self.feed, "[ 1 ] 0 { pop pop } fold")

    def test_fold1(self):
        self.assertEqual(self.feed("[ 2 3 4 ] { mul } fold1"), [24])
        self.calc.D.clear()
        self.assertEqual(self.feed("7 [ ] { mul } fold1"), [7])

    def test_repeat_runs_on_caller_stack(self):
        self.assertEqual(self.feed("1 { 2 mul } 10 repeat"), [1024])
        self.calc.D.clear()
        self.assertEqual(self.feed("1 { 2 mul } 0 repeat { 2 mul } -3 repeat"), [1])
        self.calc.D.clear()
        self.assertEqual(self.feed("1 { 2 mul } 2.9 repeat"), [4])

    def test_apply(self):
        self.assertEqual(self.feed("5 { 1 add } apply"), [6])
        self.calc.D.clear()
        self.assertEqual(self.feed("3 ,dup apply"), [3, 3])
        self.calc.D.clear()
        self.assertEqual(self.feed("3 4 apply"), [3])

    def test_if(self):
        self.assertEqual(self.feed("1 { 10 } { 20 } if"), [10])
        self.calc.D.clear()
        self.assertEqual(self.feed("0 { 10 } { 20 } if"), [20])
        self.calc.D.clear()
        self.assertEqual(self.feed("0 10 20 if 1 ,a ,b if"), [20, QuotedWord("a")])
        self.calc.D.clear()
        self.assertRaises(WrongTypeOperandError, self.feed, "1.0 10 20 if")

    def test_def_binds_values_and_blocks(self):
        self.assertEqual(self.feed(",sq { dup mul } def 7 sq"), [49])
        self.calc.D.clear()
        self.assertEqual(self.feed(",ten 10 def ten ten add"), [20])
        self.calc.D.clear()
        self.assertEqual(self.feed(",sq { 3 } def sq"), [3])
        self.assertRaises(WrongTypeOperandError, self.feed, "5 6 def")

    def test_alias_validates_target(self):
        self.assertEqual(self.feed(",plus ,add alias 2 3 plus"), [5])
        with self.assertRaises(UnknownWordError) as cm:
            self.feed(",x ,nothing alias")
        self.assertEqual(cm.exception.word, "nothing")

    def test_def_inside_map_does_not_leak(self):
        self.feed("[ 1 ] { ,tmp 1 def tmp add } map")
        self.assertEqual(self.calc.D, [[2]])
        self.assertIsNone(self.calc.scope.lookup("tmp"))


if __name__ == "__main__":
    if "--test" in sys.argv:
        sys.argv = [sys.argv[0]]
        unittest.main()
