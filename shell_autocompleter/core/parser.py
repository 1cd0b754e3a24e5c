# shell_autocompleter/core/parser.py
"""
CommandParser - turns one line of shell input into a ParsedCommand.

 - hand-written tokenizer: quotes, escapes, $(...) and backticks kept inside a word,
   list operators (; & && || newline), pipes (| |&) and redirections ([fd]> >> < <<< >& <& &> &>> <>)
 - single command -> kind=command, several stages -> kind=pipeline, several list items -> kind=program
 - partial input is normal while typing: trailing operators, open quotes and a missing
   redirection target are not errors
 - never raises: syntax errors become kind=error, constructs we do not model
   (subshells, groups, here-documents, shell keywords) become kind=unknown with the raw text kept

Pure and deterministic, safe to call from any thread.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from shell_autocompleter.core.errors import ParseFailure
from shell_autocompleter.core.types import CommandKind, ParsedCommand, Redirect

logger = logging.getLogger(__name__)

LIST_OPERATORS = frozenset({"&&", "||", ";", "&"})
PIPE_OPERATORS = frozenset({"|", "|&"})

SHELL_KEYWORDS = frozenset({
    "if", "then", "else", "elif", "fi", "for", "while", "until", "do", "done",
    "case", "esac", "function", "select", "coproc", "{", "}", "[[", "]]", "!",
})

_REDIRECT_RE = re.compile(r"(\d*)(&>>|&>|>>|>&|>\||<<<|<<-?|<>|<&|>|<)")
_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_METACHARS = frozenset(" \t\n|&;<>()")


@dataclass
class _Token:
    kind: str  # "word" | "op" | "redirect"
    text: str
    pos: int
    fd: Optional[int] = None


class _Unsupported(Exception):
    """A construct the parser recognises but does not model."""


def unquote(word: str) -> str:
    """Strip shell quoting from a single word (best effort, open quotes allowed)."""
    out = []
    i, n = 0, len(word)
    quote = None
    while i < n:
        ch = word[i]
        if quote:
            if ch == quote:
                quote = None
            elif ch == "\\" and quote == '"' and i + 1 < n:
                i += 1
                out.append(word[i])
            else:
                out.append(ch)
        elif ch in ("'", '"'):
            quote = ch
        elif ch == "\\" and i + 1 < n:
            i += 1
            out.append(word[i])
        else:
            out.append(ch)
        i += 1
    return "".join(out)


# Tokenizer ---------------------------------------------------------------

def _find_closing(text: str, i: int, quote: str) -> int:
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\" and quote != "'":
            i += 2
            continue
        if ch == quote:
            return i
        i += 1
    return -1


def _find_paren(text: str, i: int) -> int:
    depth = 1
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch in ("'", '"', "`"):
            end = _find_closing(text, i + 1, ch)
            if end < 0:
                return -1
            i = end + 1
            continue
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _read_word(text: str, i: int) -> Tuple[str, int, Optional[str]]:
    """Read one word starting at i. Returns (raw_word, next_index, open_quote)."""
    n = len(text)
    start = i
    while i < n:
        ch = text[i]
        if ch in _METACHARS:
            break
        if ch == "\\":
            i += 2
            continue
        if ch in ("'", '"', "`"):
            end = _find_closing(text, i + 1, ch)
            if end < 0:
                return text[start:], n, ch
            i = end + 1
            continue
        if ch == "$" and text.startswith("$(", i):
            end = _find_paren(text, i + 2)
            if end < 0:
                return text[start:], n, "$("
            i = end + 1
            continue
        i += 1
    i = min(i, n)
    return text[start:i], i, None


def _tokenize(text: str) -> Tuple[List[_Token], Optional[str]]:
    tokens: List[_Token] = []
    open_quote: Optional[str] = None
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if ch in " \t":
            i += 1
            continue
        if ch == "#":
            nl = text.find("\n", i)
            if nl < 0:
                break
            i = nl
            continue
        if ch == "\n":
            tokens.append(_Token("op", ";", i))
            i += 1
            continue
        two = text[i:i + 2]
        if two == ";;":
            raise ParseFailure("syntax error near unexpected token `;;'", i)
        if two in ("&&", "||", "|&"):
            tokens.append(_Token("op", two, i))
            i += 2
            continue
        m = _REDIRECT_RE.match(text, i)
        if m:
            fd_text, op = m.group(1), m.group(2)
            if op.startswith("<<") and op != "<<<":
                raise _Unsupported("here-document")
            tokens.append(_Token("redirect", op, i, int(fd_text) if fd_text else None))
            i = m.end()
            continue
        if ch in "|;&":
            tokens.append(_Token("op", ch, i))
            i += 1
            continue
        if ch == ")":
            raise ParseFailure("syntax error near unexpected token `)'", i)
        if ch == "(":
            raise _Unsupported("subshell")
        word, nxt, quote = _read_word(text, i)
        tokens.append(_Token("word", word, i))
        i = nxt
        if quote:
            open_quote = quote
            break
    return tokens, open_quote


# Builder -----------------------------------------------------------------

def _split(tokens: List[_Token]) -> Tuple[List[List[List[_Token]]], List[str]]:
    """Split tokens into list items -> pipeline stages -> tokens."""
    items: List[List[List[_Token]]] = []
    operators: List[str] = []
    current: List[List[_Token]] = [[]]
    for tok in tokens:
        if tok.kind != "op":
            current[-1].append(tok)
            continue
        stage = current[-1]
        if not stage:
            raise ParseFailure(f"syntax error near unexpected token `{tok.text}'", tok.pos)
        if stage[-1].kind == "redirect":
            raise ParseFailure(f"missing redirection target before `{tok.text}'", tok.pos)
        if tok.text in PIPE_OPERATORS:
            current.append([])
        else:
            items.append(current)
            operators.append(tok.text)
            current = [[]]
    items.append(current)
    return items, operators


def _simple(stage: List[_Token], raw: str) -> ParsedCommand:
    cmd = ParsedCommand(kind=CommandKind.COMMAND, raw=raw)
    i = 0
    while i < len(stage):
        tok = stage[i]
        if tok.kind == "redirect":
            if i + 1 < len(stage) and stage[i + 1].kind == "word":
                cmd.redirects.append(Redirect(tok.text, stage[i + 1].text, tok.fd))
                i += 2
            else:
                cmd.redirects.append(Redirect(tok.text, "", tok.fd))
                i += 1
            continue
        word = tok.text
        if not cmd.name:
            if _ASSIGNMENT_RE.match(word):
                cmd.assignments.append(word)
            elif word in SHELL_KEYWORDS:
                raise _Unsupported(f"shell keyword '{word}'")
            else:
                cmd.name = word
        else:
            cmd.words.append(word)
            if word.startswith("-") and word not in ("-", "--"):
                cmd.options.append(word)
            else:
                cmd.args.append(word)
        i += 1
    return cmd


def _stage_text(stage: List[_Token]) -> str:
    return " ".join(t.text for t in stage)


def simple_commands(parsed: ParsedCommand) -> List[ParsedCommand]:
    """Flatten a parse result into its simple commands, in input order."""
    if parsed.kind == CommandKind.COMMAND:
        return [parsed] if parsed.name else []
    out: List[ParsedCommand] = []
    for child in parsed.commands:
        out.extend(simple_commands(child))
    return out


class CommandParser:
    """Stateless parser. One instance can be shared by every component."""

    def parse(self, text: Optional[str]) -> ParsedCommand:
        text = text or ""
        try:
            tokens, open_quote = _tokenize(text)
            return self._build(text, tokens, open_quote)
        except ParseFailure as e:
            return ParsedCommand(kind=CommandKind.ERROR, raw=text, message=str(e))
        except _Unsupported as e:
            return ParsedCommand(kind=CommandKind.UNKNOWN, raw=text, message=f"unsupported construct: {e}")
        except Exception as e:  # keep parse() total
            logger.debug("parser failed on %r: %s", text, e)
            return ParsedCommand(kind=CommandKind.ERROR, raw=text, message=f"internal parser error: {e}")

    def command_name(self, text: str) -> str:
        return self.parse(text).name

    def _build(self, text: str, tokens: List[_Token], open_quote: Optional[str]) -> ParsedCommand:
        items, operators = _split(tokens)
        trailing_space = open_quote is None and text[-1:].isspace()

        item_cmds: List[ParsedCommand] = []
        last_stages: List[ParsedCommand] = []
        for stages in items:
            stage_cmds = []
            for st in stages:
                stage_cmds.append(_simple(st, _stage_text(st)))
            if len(stage_cmds) == 1:
                item_cmds.append(stage_cmds[0])
            else:
                last = stage_cmds[-1]
                item_cmds.append(ParsedCommand(
                    kind=CommandKind.PIPELINE,
                    name=last.name,
                    args=list(last.args),
                    options=list(last.options),
                    redirects=list(last.redirects),
                    words=list(last.words),
                    commands=stage_cmds,
                    operators=["|"] * (len(stage_cmds) - 1),
                ))
            last_stages = stage_cmds

        current = last_stages[-1]
        if len(items) > 1:
            kind = CommandKind.PROGRAM
            children = item_cmds
            ops = operators
        elif len(last_stages) > 1:
            kind = CommandKind.PIPELINE
            children = last_stages
            ops = ["|"] * (len(last_stages) - 1)
        else:
            kind = CommandKind.COMMAND
            children = []
            ops = []

        last_stage_tokens = items[-1][-1]
        redirect_pending = False
        if last_stage_tokens:
            if last_stage_tokens[-1].kind == "redirect":
                redirect_pending = True
            elif (len(last_stage_tokens) >= 2 and last_stage_tokens[-2].kind == "redirect"
                  and not trailing_space):
                redirect_pending = True

        return ParsedCommand(
            kind=kind,
            name=current.name,
            args=current.args,
            options=current.options,
            redirects=current.redirects,
            raw=text,
            commands=children,
            operators=ops,
            assignments=current.assignments,
            words=current.words,
            has_trailing_space=trailing_space,
            open_quote=open_quote,
            redirect_pending=redirect_pending,
        )
