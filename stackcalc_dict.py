#!/usr/bin/env python3
# stackcalc_dict.py
#
# Dictionnaire de mots à portée lexicale.
# - Builtin : énumération fermée des primitives (nom figé + effet de pile)
# - Scope   : map locale nom -> entrée + parent optionnel (lecture seule depuis l'enfant)
# - Alias   : redirection résolue par chaînage, local d'abord puis délégation au parent
#
# Un Scope par sous-évaluateur ; seul le scope global vit toute la durée du process.

from __future__ import annotations

import logging
import sys
import unittest
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Union

from stackcalc_values import Block, decode_value, encode_value

log = logging.getLogger(__name__)


class Builtin(Enum):
    # Arithmetic
    ADD    = ("add",    "( a b -- a+b )")
    SUB    = ("sub",    "( a b -- a-b )")
    MUL    = ("mul",    "( a b -- a*b )")
    DIV    = ("div",    "( a b -- a/b ) float division")
    MOD    = ("mod",    "( x y -- fmod(x,y) ) floats")
    SQRT   = ("sqrt",   "( x -- sqrt(x) ) float")
    POW    = ("pow",    "( x y -- x^y ) floats")
    EXP    = ("exp",    "( x -- e^x ) float")
    LOG    = ("log",    "( x base -- log_base(x) ) floats")
    LN     = ("ln",     "( x -- ln(x) ) float")
    SIN    = ("sin",    "( x -- sin(x) ) float")
    COS    = ("cos",    "( x -- cos(x) ) float")
    TAN    = ("tan",    "( x -- tan(x) ) float")
    ASIN   = ("asin",   "( x -- asin(x) ) float")
    ACOS   = ("acos",   "( x -- acos(x) ) float")
    ATAN   = ("atan",   "( x -- atan(x) ) float")
    SUM    = ("sum",    "( vec -- total ) float sum of the numeric elements")

    # Stack manipulation
    DUP    = ("dup",    "( x -- x x )")
    POP    = ("pop",    "( x -- )")
    SWAP   = ("swap",   "( a b -- b a )")
    OVER   = ("over",   "( a b -- a b a )")
    ROLL3  = ("roll3",  "( c b a -- b c a )")

    # Functional
    MAP    = ("map",    "( vec block -- vec' )")
    FOLD   = ("fold",   "( vec init block -- acc )")
    FOLD1  = ("fold1",  "( vec block -- acc | ) nothing on an empty vector")
    FILTER = ("filter", "( vec block -- vec' )")
    REPEAT = ("repeat", "( block n -- ... ) runs block n times")
    APPLY  = ("apply",  "( block|,word -- ... )")

    # Definitions
    DEF    = ("def",    "( ,name value -- )")
    ALIAS  = ("alias",  "( ,name ,target -- )")
    ARG    = ("arg",    "( -- ) inside [ ]: moves one value from the enclosing stack")

    # Comparisons
    MIN    = ("min",    "( a b -- min ) ints")
    MAX    = ("max",    "( a b -- max ) ints")
    CMP    = ("cmp",    "( b a -- sign(b-a) ) ints")

    # Control
    IF     = ("if",     "( test then else -- ... )")

    # Vectors
    LEN    = ("len",    "( vec -- n )")

    # IO
    PRINT  = ("print",  "( x -- ) print x")
    DUMP   = ("dump",   "( -- ) print the whole stack")
    STDIN  = ("stdin",  "( -- vec ) literals read from standard input")

    def __init__(self, word: str, doc: str) -> None:
        self.word = word
        self.doc = doc


@dataclass(frozen=True)
class Alias:
    target: str


# Builtin, ou n'importe quelle valeur liée par def (le plus souvent un Block)
Operation = Union[Builtin, Any]


class Scope:
    """
    One dictionary of word bindings plus an optional parent.

    Children only read their parent; ``insert`` and ``insert_alias`` touch
    the local map and overwrite a same-named binding.
    """

    def __init__(self, parent: Optional["Scope"] = None) -> None:
        self._map: Dict[str, Union[Alias, Operation]] = {}
        self.parent = parent

    @classmethod
    def with_builtins(cls) -> "Scope":
        scope = cls()
        for b in Builtin:
            scope.insert(b.word, b)
        return scope

    def child(self) -> "Scope":
        return Scope(parent=self)

    def insert(self, name: str, op: Operation) -> None:
        self._map[name] = op

    def insert_alias(self, name: str, target: str) -> None:
        self._map[name] = Alias(target)

    def lookup(self, name: str) -> Optional[Operation]:
        entry = self._map.get(name)
        seen: Set[str] = {name}
        while isinstance(entry, Alias):
            name = entry.target
            if name in seen:
                # cycle local : on délègue comme pour une entrée absente
                entry = None
                break
            seen.add(name)
            entry = self._map.get(name)
        if entry is not None:
            return entry
        if self.parent is None:
            return None
        return self.parent.lookup(name)

    def _visible_name(self, name: str) -> str:
        # suit la chaîne d'alias locale jusqu'au nom qui porte l'opération
        seen = {name}
        entry = self._map.get(name)
        while isinstance(entry, Alias):
            name = entry.target
            if name in seen or name not in self._map:
                return name
            seen.add(name)
            entry = self._map[name]
        return name

    def available_words(self) -> Dict[str, List[str]]:
        """Visible name -> sorted aliases, merged with the parent's listing."""
        words = self.parent.available_words() if self.parent is not None else {}
        for name in list(words):
            words[name] = [a for a in words[name] if a not in self._map]
        aliases = [n for n, e in self._map.items() if isinstance(e, Alias)]
        for name in aliases:
            words.pop(name, None)
        for name, entry in self._map.items():
            if not isinstance(entry, Alias):
                words.setdefault(name, [])
        for name in aliases:
            words.setdefault(self._visible_name(name), []).append(name)
        return {name: sorted(words[name]) for name in sorted(words)}

    # --- persistence ---
    def local_definitions(self) -> Dict[str, Union[Alias, Operation]]:
        return {n: e for n, e in self._map.items() if not isinstance(e, Builtin)}

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for name, entry in self.local_definitions().items():
            if isinstance(entry, Alias):
                out[name] = {"alias": entry.target}
            else:
                out[name] = {"value": encode_value(entry)}
        return {"words": out}

    def load_dict(self, d: Dict[str, Any]) -> int:
        """Restore definitions written by to_dict. Raises ValueError on a malformed
        snapshot, before anything is inserted."""
        words = d.get("words", {}) if isinstance(d, dict) else None
        if not isinstance(words, dict):
            raise ValueError("snapshot must be an object with a 'words' object")
        entries: List[tuple] = []
        for name, e in words.items():
            if isinstance(e, dict) and isinstance(e.get("alias"), str):
                entries.append((name, Alias(e["alias"])))
                continue
            if not isinstance(e, dict) or not isinstance(e.get("value"), dict):
                raise ValueError(f"bad snapshot entry for {name!r}")
            try:
                entries.append((name, decode_value(e["value"])))
            except (TypeError, AttributeError, ValueError) as err:
                raise ValueError(f"bad snapshot entry for {name!r}: {err}") from None
        for name, entry in entries:
            if isinstance(entry, Alias):
                self.insert_alias(name, entry.target)
            else:
                self.insert(name, entry)
        log.debug("loaded %d definitions", len(entries))
        return len(entries)


class TestScope(unittest.TestCase):
    def test_builtins_and_alias(self):
        d = Scope.with_builtins()
        self.assertIs(d.lookup("add"), Builtin.ADD)
        self.assertIsNone(d.lookup("plus"))
        d.insert_alias("plus", "add")
        self.assertIs(d.lookup("plus"), Builtin.ADD)
        d.insert("incr", Block(("1", "add")))
        self.assertEqual(d.lookup("incr"), Block(("1", "add")))

    def test_parent_delegation(self):
        d = Scope.with_builtins()
        d.insert_alias("plus", "add")
        sub = d.child()
        self.assertIs(sub.lookup("plus"), Builtin.ADD)
        sub.insert_alias("+", "plus")
        self.assertIs(sub.lookup("+"), Builtin.ADD)
        # l'enfant ne modifie pas le parent
        self.assertIsNone(d.lookup("+"))

    def test_alias_chain_to_grandparent(self):
        root = Scope.with_builtins()
        mid = root.child()
        leaf = mid.child()
        leaf.insert_alias("a", "b")
        leaf.insert_alias("b", "mul")
        self.assertIs(leaf.lookup("a"), Builtin.MUL)

    def test_overwrite_and_shadowing(self):
        root = Scope.with_builtins()
        root.insert("x", 1)
        child = root.child()
        child.insert("x", 2)
        self.assertEqual(child.lookup("x"), 2)
        self.assertEqual(root.lookup("x"), 1)
        root.insert("x", 3)
        self.assertEqual(root.lookup("x"), 3)

    def test_alias_cycle_terminates(self):
        root = Scope.with_builtins()
        child = root.child()
        child.insert_alias("add", "plus")
        child.insert_alias("plus", "add")
        # le cycle retombe sur le parent avec le nom où il a été détecté
        self.assertIs(child.lookup("add"), Builtin.ADD)
        self.assertIsNone(child.lookup("plus"))
        root.insert_alias("p", "q")
        root.insert_alias("q", "p")
        self.assertIsNone(root.lookup("p"))

    def test_available_words(self):
        root = Scope.with_builtins()
        root.insert_alias("plus", "add")
        child = root.child()
        child.insert_alias("+", "plus")
        child.insert("sq", Block(("dup", "mul")))
        words = child.available_words()
        self.assertEqual(words["add"], ["plus"])
        self.assertEqual(words["plus"], ["+"])
        self.assertEqual(words["sq"], [])
        self.assertNotIn("+", words)
        self.assertEqual(list(words), sorted(words))

    def test_local_name_wins_in_listing(self):
        root = Scope.with_builtins()
        root.insert_alias("plus", "add")
        child = root.child()
        child.insert_alias("plus", "mul")
        words = child.available_words()
        self.assertEqual(words["mul"], ["plus"])
        self.assertEqual(words["add"], [])

    def test_persistence(self):
        root = Scope.with_builtins()
        root.insert("sq", Block(("dup", "mul")))
        root.insert("ten", 10)
        root.insert_alias("square", "sq")
        d = root.to_dict()
        self.assertNotIn("add", d["words"])
        other = Scope.with_builtins()
        self.assertEqual(other.load_dict(d), 3)
        self.assertEqual(other.lookup("square"), Block(("dup", "mul")))
        self.assertEqual(other.lookup("ten"), 10)

    def test_malformed_snapshot_is_rejected(self):
        d = Scope.with_builtins()
        for bad in ([], {"words": []}, {"words": {"x": 5}}, {"words": {"x": {}}},
                    {"words": {"x": {"value": {"kind": "vector", "value": 3}}}},
                    {"words": {"x": {"value": {"kind": "nope"}}}},
                    {"words": {"ok": {"value": {"kind": "int", "value": 1}}, "x": {"alias": 2}}}):
            self.assertRaises(ValueError, d.load_dict, bad)
        self.assertIsNone(d.lookup("ok"))


if __name__ == "__main__":
    if "--test" in sys.argv:
        sys.argv = [sys.argv[0]]
        unittest.main()
