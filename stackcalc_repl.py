#!/usr/bin/env python3
# stackcalc_repl.py
#
# Couche hôte du calculateur :
# - tokenize()  : découpe d'une ligne en mots façon shell (shlex, commentaires #)
# - Config      : options CLI + variables d'environnement
# - prélude     : fichier de mots exécuté dans le scope global au démarrage
# - main()      : point d'entrée CLI (argparse), affiche la pile finale ou la liste des mots
# - StackCalcREPL : boucle interactive prompt_toolkit avec complétion et dot-commands
#
# Variables d'environnement :
#   STACKCALC_PRELUDE   chemin du prélude (défaut ~/.stackcalc)
#   STACKCALC_LOG       niveau de log (DEBUG, INFO, ... ou numérique)
#
# Tests intégrés :
#   python stackcalc_repl.py --test

from __future__ import annotations

import argparse
import io
import json
import logging
import os
import shlex
import sys
import unittest
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, TextIO

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import Completer, Completion

from stackcalc_core import Calc
from stackcalc_dict import Builtin
from stackcalc_errors import CalcError, WordParseError
from stackcalc_values import QUOTE, Block, display, parse_literal

log = logging.getLogger(__name__)

DEFAULT_PRELUDE = os.path.join("~", ".stackcalc")
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

DOT_CMDS = {".bye", ".clear", ".help", ".load", ".save", ".see", ".stack", ".words"}


def tokenize(line: str) -> List[str]:
    try:
        return shlex.split(line, comments=True)
    except ValueError as e:
        # guillemet non fermé
        raise WordParseError(line) from e


# ============================================================
# Configuration
# ============================================================

@dataclass
class Config:
    words: List[str] = field(default_factory=list)
    prelude: Optional[str] = None
    load_prelude: bool = True
    list_words: bool = False
    interactive: bool = False
    log_level: int = logging.WARNING


def _env_log_level(environ: Dict[str, str]) -> int:
    raw = environ.get("STACKCALC_LOG", "").strip()
    if not raw:
        return logging.WARNING
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else logging.WARNING


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="stackcalc",
        description="Postfix stack calculator. Each WORD is split shell-style and run in order.",
    )
    p.add_argument("words", nargs="*", metavar="WORD", help="words to evaluate")
    p.add_argument("--prelude", metavar="PATH", help="prelude file (default: $STACKCALC_PRELUDE or ~/.stackcalc)")
    p.add_argument("--no-prelude", action="store_true", help="do not load the prelude")
    p.add_argument("--words", dest="list_words", action="store_true", help="list available words instead of the stack")
    p.add_argument("-i", "--interactive", action="store_true", help="start the REPL after running WORDs")
    p.add_argument("-v", "--verbose", action="count", default=0, help="more logging (repeatable)")
    p.add_argument("-q", "--quiet", action="store_true", help="only log errors")
    return p


def parse_args(argv: Optional[List[str]] = None, environ: Optional[Dict[str, str]] = None,
               stdin: Optional[TextIO] = None) -> Config:
    environ = os.environ if environ is None else environ
    stdin = sys.stdin if stdin is None else stdin
    args = build_parser().parse_args(argv)

    level = logging.ERROR if args.quiet else _env_log_level(environ)
    level = max(logging.DEBUG, level - 10 * args.verbose)

    prelude = args.prelude or environ.get("STACKCALC_PRELUDE") or DEFAULT_PRELUDE
    interactive = args.interactive or (
        not args.words and not args.list_words and stdin.isatty()
    )
    return Config(
        words=list(args.words),
        prelude=os.path.expanduser(prelude),
        load_prelude=not args.no_prelude,
        list_words=args.list_words,
        interactive=interactive,
        log_level=level,
    )


def setup_logging(level: int) -> None:
    logging.basicConfig(stream=sys.stderr, level=level, format=LOG_FORMAT)


# ============================================================
# Prélude + exécution
# ============================================================

def load_prelude(calc: Calc, path: str) -> bool:
    """Run a prelude file into calc's scope. Returns False when the file does not exist."""
    if not os.path.isfile(path):
        log.debug("no prelude at %s", path)
        return False
    with open(path, "r", encoding="utf-8") as f:
        for lineno, line in enumerate(f, 1):
            try:
                calc.run(tokenize(line))
            except CalcError as e:
                log.error("%s:%d: %s", path, lineno, e)
                raise
    if not calc.is_idle:
        log.warning("%s: unterminated block or vector literal", path)
    log.info("prelude loaded from %s", path)
    return True


def run_words(calc: Calc, words: Iterable[str]) -> None:
    for arg in words:
        calc.run(tokenize(arg))


def main(argv: Optional[List[str]] = None) -> int:
    cfg = parse_args(argv)
    setup_logging(cfg.log_level)
    calc = Calc()

    if cfg.load_prelude and cfg.prelude:
        try:
            load_prelude(calc, cfg.prelude)
        except (CalcError, OSError) as e:
            print(f"Error: in prelude {cfg.prelude}: {e}", file=sys.stderr)
            return 1
        except RecursionError:
            print(f"Error: in prelude {cfg.prelude}: recursion too deep", file=sys.stderr)
            return 1

    try:
        run_words(calc, cfg.words)
    except CalcError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except RecursionError:
        print("Error: recursion too deep", file=sys.stderr)
        return 1
    if not calc.is_idle:
        log.warning("unterminated block or vector literal")

    if cfg.interactive:
        StackCalcREPL(calc).run()
        return 0
    if cfg.list_words:
        calc.list_available_words()
    else:
        calc.print_stack()
    return 0


# ============================================================
# REPL
# ============================================================

class StackCalcCompleter(Completer):
    """Complétion des dot-commands et des mots visibles (y compris ,mot)."""

    def __init__(self, repl: "StackCalcREPL") -> None:
        self.repl = repl

    def get_completions(self, document, complete_event):
        word_before = document.get_word_before_cursor(WORD=True)
        if not word_before:
            return
        start_pos = -len(word_before)
        if word_before.startswith(".") and document.text_before_cursor.lstrip() == word_before:
            for dc in sorted(DOT_CMDS):
                if dc.startswith(word_before):
                    yield Completion(dc, start_position=start_pos)
            return
        prefix = QUOTE if word_before.startswith(QUOTE) else ""
        frag = word_before[len(prefix):]
        names = set()
        for name, aliases in self.repl.calc.scope.available_words().items():
            names.add(name)
            names.update(aliases)
        for name in sorted(names):
            if name.startswith(frag):
                yield Completion(prefix + name, start_position=start_pos)


class StackCalcREPL:
    """
    Interactive loop over one Calc.

    - a line of words runs on the calculator, then the stack is shown
    - an error is reported and the session continues with whatever is left on the stack
    - lines starting with '.' are dot-commands
    """

    def __init__(self, calc: Optional[Calc] = None, out: Optional[TextIO] = None) -> None:
        self.out: TextIO = out if out is not None else sys.stdout
        self.calc = calc if calc is not None else Calc()
        self.calc.out = self.out

    @property
    def prompt(self) -> str:
        # frame en attente : bloc ou vecteur sur plusieurs lignes
        return "stackcalc> " if self.calc.is_idle else "... "

    def stack_line(self) -> str:
        D = self.calc.D
        return f"<{len(D)}> " + " ".join(display(v) for v in D)

    def handle_line(self, line: str) -> None:
        if not line.strip():
            return
        first = line.split()[0]
        # ".5" reste un littéral
        if first.startswith(".") and parse_literal(first) is None and self.calc.is_idle:
            self.handle_dot_command(line)
            return
        try:
            self.calc.run(tokenize(line))
        except CalcError as e:
            self.out.write(f"Error: {e}\n")
        except RecursionError:
            self.out.write("Error: recursion too deep\n")
        if self.calc.is_idle:
            self.out.write(self.stack_line() + "\n")

    # --- Dot-commands via dispatch table ---
    def _dotcmd_dispatch(self) -> Dict[str, Callable[[List[str]], None]]:
        return {
            ".help": self._dot_help,
            ".stack": self._dot_stack,
            ".words": self._dot_words,
            ".see": self._dot_see,
            ".clear": self._dot_clear,
            ".save": self._dot_save,
            ".load": self._dot_load,
            ".bye": self._dot_bye,
        }

    def handle_dot_command(self, line: str) -> None:
        parts = line.split()
        cmd, args = parts[0], parts[1:]
        h = self._dotcmd_dispatch().get(cmd)
        if not h:
            self.out.write(f"unknown dot-cmd: {cmd}\n")
            return
        h(args)

    def _dot_help(self, args):
        self.out.write(".stack .words [filter] .see <w> .clear\n")
        self.out.write(".save <file> / .load <file> / .bye\n")

    def _dot_stack(self, args):
        self.out.write(self.stack_line() + "\n")

    def _dot_words(self, args):
        filt = args[0] if args else None
        for name, aliases in self.calc.scope.available_words().items():
            if filt and not any(filt in n for n in [name, *aliases]):
                continue
            if aliases:
                self.out.write(f"{name} (aliases: {', '.join(aliases)})\n")
            else:
                self.out.write(f"{name}\n")

    def _dot_see(self, args):
        if not args:
            self.out.write("unknown: \n"); return
        op = self.calc.scope.lookup(args[0])
        if op is None:
            self.out.write(f"unknown: {args[0]}\n")
        elif isinstance(op, Builtin):
            self.out.write(f"builtin {op.word}  {op.doc}\n")
        elif isinstance(op, Block):
            self.out.write(f"{QUOTE}{args[0]} {{ {' '.join(op.words)} }} def\n")
        else:
            self.out.write(f"{QUOTE}{args[0]} {display(op)} def\n")

    def _dot_clear(self, args):
        self.calc.D.clear()
        self.out.write(self.stack_line() + "\n")

    def _dot_save(self, args):
        if not args:
            self.out.write("save error: missing filename\n"); return
        fn = args[0]
        try:
            with open(fn, "w", encoding="utf-8") as f:
                json.dump(self.calc.scope.to_dict(), f, ensure_ascii=False, indent=2)
            self.out.write(f"definitions saved to {fn}\n")
        except OSError as e:
            self.out.write(f"save error: {e}\n")

    def _dot_load(self, args):
        if not args:
            self.out.write("load error: missing filename\n"); return
        fn = args[0]
        try:
            with open(fn, "r", encoding="utf-8") as f:
                data = json.load(f)
            n = self.calc.scope.load_dict(data)
            self.out.write(f"loaded {n} definitions from {fn}\n")
        except (OSError, ValueError, KeyError) as e:
            self.out.write(f"load error: {e}\n")

    def _dot_bye(self, args):
        raise SystemExit(0)

    def run(self) -> None:
        session = PromptSession(completer=StackCalcCompleter(self))
        self.out.write("stackcalc REPL. .help for dot-commands, Ctrl-D to quit.\n")
        while True:
            try:
                line = session.prompt(self.prompt)
            except EOFError:
                break
            except KeyboardInterrupt:
                continue
            try:
                self.handle_line(line)
            except SystemExit:
                return


# ======================================================================
# Tests intégrés (python stackcalc_repl.py --test)
# ======================================================================

import tempfile
from unittest import mock


class TestTokenize(unittest.TestCase):
    def test_shell_style_split(self):
        self.assertEqual(tokenize("1 2 add"), ["1", "2", "add"])
        self.assertEqual(tokenize("  {  dup mul }  "), ["{", "dup", "mul", "}"])
        self.assertEqual(tokenize("1 2 add # commentaire"), ["1", "2", "add"])
        self.assertEqual(tokenize("',sq' \"{\" dup"), [",sq", "{", "dup"])
        self.assertEqual(tokenize(""), [])

    def test_unterminated_quote(self):
        self.assertRaises(WordParseError, tokenize, "1 'oops")


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        cfg = parse_args(["1", "2 add"], environ={}, stdin=io.StringIO())
        self.assertEqual(cfg.words, ["1", "2 add"])
        self.assertTrue(cfg.load_prelude)
        self.assertEqual(cfg.prelude, os.path.expanduser(DEFAULT_PRELUDE))
        self.assertFalse(cfg.interactive)
        self.assertEqual(cfg.log_level, logging.WARNING)

    def test_environment_and_flags(self):
        env = {"STACKCALC_PRELUDE": "/tmp/p.sc", "STACKCALC_LOG": "info"}
        cfg = parse_args(["--no-prelude", "--words", "-v"], environ=env, stdin=io.StringIO())
        self.assertEqual(cfg.prelude, "/tmp/p.sc")
        self.assertFalse(cfg.load_prelude)
        self.assertTrue(cfg.list_words)
        self.assertEqual(cfg.log_level, logging.DEBUG)
        cfg = parse_args(["--prelude", "/x", "-q"], environ=env, stdin=io.StringIO())
        self.assertEqual(cfg.prelude, "/x")
        self.assertEqual(cfg.log_level, logging.ERROR)

    def test_interactive_when_no_words_on_a_tty(self):
        tty = mock.Mock()
        tty.isatty.return_value = True
        self.assertTrue(parse_args([], environ={}, stdin=tty).interactive)
        self.assertFalse(parse_args(["1"], environ={}, stdin=tty).interactive)
        self.assertTrue(parse_args(["-i", "1"], environ={}, stdin=io.StringIO()).interactive)


class TestMain(unittest.TestCase):
    def run_main(self, argv):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err), \
                mock.patch.object(sys, "stdin", io.StringIO()):
            code = main(argv)
        return code, out.getvalue(), err.getvalue()

    def test_prints_final_stack(self):
        code, out, _ = self.run_main(["--no-prelude", "2 3 add", "[ 1 2 ]", "2.5"])
        self.assertEqual(code, 0)
        self.assertEqual(out, "5\n[1, 2] len: 2\n2.5\n")

    def test_error_exit_status(self):
        code, out, err = self.run_main(["--no-prelude", "10", "0", "div"])
        self.assertEqual(code, 1)
        self.assertEqual(out, "")
        self.assertIn("Error: Division by zero", err)

    def test_word_listing(self):
        code, out, _ = self.run_main(["--no-prelude", "--words", ",plus ,add alias"])
        self.assertEqual(code, 0)
        self.assertIn("add (aliases: plus)\n", out)
        self.assertIn("roll3\n", out)

    def test_prelude(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "prelude")
            with open(path, "w", encoding="utf-8") as f:
                f.write("# carré\n,sq { dup mul } def\n,inc {\n 1 add\n} def\n")
            code, out, _ = self.run_main(["--prelude", path, "7 sq inc"])
            self.assertEqual((code, out), (0, "50\n"))

    def test_missing_prelude_is_skipped(self):
        code, out, _ = self.run_main(["--prelude", "/nonexistent/stackcalc-prelude", "1"])
        self.assertEqual((code, out), (0, "1\n"))

    def test_failing_prelude_names_the_file(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "bad")
            with open(path, "w", encoding="utf-8") as f:
                f.write("1 2 add\nbogus\n")
            code, _, err = self.run_main(["--prelude", path, "1"])
            self.assertEqual(code, 1)
            self.assertIn(path, err)
            self.assertIn("bogus", err)

    def test_recursive_prelude_reports_error(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "loop")
            with open(path, "w", encoding="utf-8") as f:
                f.write(",forever { forever } def\nforever\n")
            code, out, err = self.run_main(["--prelude", path, "1"])
            self.assertEqual((code, out), (1, ""))
            self.assertIn(f"Error: in prelude {path}: recursion too deep", err)

    def test_huge_integer_on_command_line(self):
        code, out, _ = self.run_main(["--no-prelude", "9" * 5000])
        self.assertEqual((code, out), (0, "9" * 5000 + "\n"))

    def test_stdin_word_reads_piped_input(self):
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err), \
                mock.patch.object(sys, "stdin", io.StringIO("1\n2\nx\n3.5\n")):
            code = main(["--no-prelude", "stdin sum"])
        self.assertEqual((code, out.getvalue()), (0, "6.5\n"))


class TestREPL(unittest.TestCase):
    def setUp(self):
        self.out = io.StringIO()
        self.repl = StackCalcREPL(Calc(), out=self.out)

    def feed(self, line):
        self.out.truncate(0); self.out.seek(0)
        self.repl.handle_line(line)
        return self.out.getvalue()

    def test_line_shows_stack(self):
        self.assertEqual(self.feed("1 2 add 4"), "<2> 3 4\n")
        self.assertEqual(self.feed("print"), "4\n<1> 3\n")
        self.assertEqual(self.feed(".5 pop"), "<1> 3\n")

    def test_error_keeps_session(self):
        out = self.feed("1 0 div")
        self.assertIn("Error: Division by zero", out)
        self.assertIn("<0>", out)
        self.assertEqual(self.feed("5"), "<1> 5\n")

    def test_multiline_block(self):
        self.assertEqual(self.feed("{ 1"), "")
        self.assertEqual(self.repl.prompt, "... ")
        self.assertEqual(self.feed("add } ,inc swap def 41 inc"), "<1> 42\n")
        self.assertEqual(self.repl.prompt, "stackcalc> ")

    def test_dot_commands(self):
        self.feed(",sq { dup mul } def ,ten 10 def ,square ,sq alias 3")
        self.assertEqual(self.feed(".stack"), "<1> 3\n")
        self.assertIn("sq (aliases: square)", self.feed(".words sq"))
        self.assertEqual(self.feed(".see square"), ",square { dup mul } def\n")
        self.assertEqual(self.feed(".see ten"), ",ten 10 def\n")
        self.assertIn("builtin add", self.feed(".see add"))
        self.assertEqual(self.feed(".see nope"), "unknown: nope\n")
        self.assertEqual(self.feed(".clear"), "<0> \n")
        self.assertIn("unknown dot-cmd", self.feed(".frob"))
        self.assertRaises(SystemExit, self.repl.handle_line, ".bye")

    def test_save_and_load(self):
        self.feed(",sq { dup mul } def ,square ,sq alias")
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "defs.json")
            self.assertIn("saved", self.feed(f".save {path}"))
            other = StackCalcREPL(Calc(), out=io.StringIO())
            other.handle_line(f".load {path}")
            other.handle_line("4 square")
            self.assertEqual(other.calc.D, [16])
            self.assertIn("load error", self.feed(f".load {os.path.join(d, 'missing.json')}"))

    def test_load_malformed_snapshot_keeps_session(self):
        with tempfile.TemporaryDirectory() as d:
            for name, body in (("int.json", '{"words": {"x": 5}}'), ("list.json", "[]"),
                               ("broken.json", "{not json")):
                path = os.path.join(d, name)
                with open(path, "w", encoding="utf-8") as f:
                    f.write(body)
                self.assertIn("load error", self.feed(f".load {path}"))
        self.assertEqual(self.feed("2 3 add"), "<1> 5\n")

    def test_completion(self):
        from prompt_toolkit.completion import CompleteEvent
        from prompt_toolkit.document import Document
        self.feed(",plus ,add alias")
        comp = StackCalcCompleter(self.repl)

        def names(text):
            return [c.text for c in comp.get_completions(Document(text), CompleteEvent())]

        self.assertIn("roll3", names("1 2 3 ro"))
        self.assertEqual(names("2 pl"), ["plus"])
        self.assertIn(",dup", names(",du"))
        self.assertIn(".words", names(".wo"))


if __name__ == "__main__":
    if "--test" in sys.argv:
        # Nettoie sys.argv pour unittest
        sys.argv = [sys.argv[0]]
        unittest.main()
    else:
        sys.exit(main())
