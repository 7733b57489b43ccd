"""
Voice/Text Command Interpreter.

Maps a transcribed operator phrase ("four", "wide two", "caught by Smith",
"penalty five") to a ``BallCandidate``. Matching runs over equivalence
classes of canonical words plus near-homophones that transcription tends
to produce ("for", "fore", "sicks", "why would"), with a ``difflib``
similarity fallback for misspellings.

The interpreter never mutates anything and never guesses a dismissal
type, a fielder or which batter was run out: whenever one of those is
missing or uncertain it returns every plausible candidate, ranked, for
the operator to confirm.
"""

from __future__ import annotations

import difflib
import itertools
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from livescore.config import ScoringRules
from livescore.data.ball_event import (
    NO_BALL_DISMISSALS,
    WIDE_DISMISSALS,
    BallCandidate,
    DismissalType,
    ExtraType,
)

logger = logging.getLogger(__name__)

# Fuzzy fallback thresholds
FUZZY_CUTOFF = 0.8
FUZZY_MIN_LENGTH = 4
MAX_CANDIDATES = 8


class InterpretationKind(Enum):
    RESOLVED = "resolved"
    AMBIGUOUS = "ambiguous"
    UNRECOGNIZED = "unrecognized"


class Intent(Enum):
    DELIVERY = "delivery"
    UNDO = "undo"


@dataclass
class OverContext:
    """Read-only view of the innings cursor used to disambiguate a phrase."""
    over: int = 0
    ball: int = 1
    free_hit: bool = False
    previous_phrase: str = ""
    striker: Optional[str] = None
    non_striker: Optional[str] = None
    bowler: Optional[str] = None
    fielders: list[str] = field(default_factory=list)
    require_fielder: bool = False  # Catches must name the fielder


@dataclass
class Interpretation:
    kind: InterpretationKind
    phrase: str
    intent: Intent = Intent.DELIVERY
    candidates: list[BallCandidate] = field(default_factory=list)
    confidence: float = 0.0
    detail: str = ""

    @property
    def candidate(self) -> Optional[BallCandidate]:
        if self.kind == InterpretationKind.RESOLVED and self.candidates:
            return self.candidates[0]
        return None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "intent": self.intent.value,
            "phrase": self.phrase,
            "candidates": [c.to_dict() for c in self.candidates],
            "confidence": round(self.confidence, 2),
            "detail": self.detail,
        }


# ── Vocabulary ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class Term:
    kind: str  # runs, extra, dead, short, penalty, wicket, undo, end, by, pause
    value: object = None


def _runs(n: int) -> Term:
    return Term("runs", n)


def _wicket(kind: Optional[DismissalType]) -> Term:
    return Term("wicket", kind)


# Multi-word phrases, matched before single words (longest first)
PHRASES: dict[tuple[str, ...], Term] = {
    ("no", "run"): _runs(0),
    ("no", "runs"): _runs(0),
    ("dot", "ball"): _runs(0),
    ("why", "would"): Term("extra", ExtraType.WIDE),
    ("why", "d"): Term("extra", ExtraType.WIDE),
    ("no", "ball"): Term("extra", ExtraType.NO_BALL),
    ("know", "ball"): Term("extra", ExtraType.NO_BALL),
    ("leg", "bye"): Term("extra", ExtraType.LEG_BYE),
    ("leg", "byes"): Term("extra", ExtraType.LEG_BYE),
    ("leg", "by"): Term("extra", ExtraType.LEG_BYE),
    ("dead", "ball"): Term("dead"),
    ("short", "run"): Term("short"),
    ("one", "short"): Term("short"),
    ("run", "out"): _wicket(DismissalType.RUN_OUT),
    ("hit", "wicket"): _wicket(DismissalType.HIT_WICKET),
    ("leg", "before"): _wicket(DismissalType.LBW),
    ("leg", "before", "wicket"): _wicket(DismissalType.LBW),
    ("l", "b", "w"): _wicket(DismissalType.LBW),
    ("el", "bee", "double", "you"): _wicket(DismissalType.LBW),
    ("retired", "hurt"): _wicket(DismissalType.RETIRED),
    ("caught", "and", "bowled"): Term("caught_and_bowled"),
    ("c", "and", "b"): Term("caught_and_bowled"),
    ("hows", "that"): _wicket(None),
    ("non", "striker"): Term("end", "non_striker"),
    ("scratch", "that"): Term("undo"),
    ("cancel", "that"): Term("undo"),
    ("take", "back"): Term("undo"),
}

WORDS: dict[str, Term] = {
    # runs
    "dot": _runs(0), "zero": _runs(0), "nothing": _runs(0),
    "one": _runs(1), "single": _runs(1), "won": _runs(1),
    "two": _runs(2), "double": _runs(2), "couple": _runs(2),
    "three": _runs(3), "triple": _runs(3), "tree": _runs(3),
    "four": _runs(4), "boundary": _runs(4), "for": _runs(4), "fore": _runs(4),
    "five": _runs(5),
    "six": _runs(6), "maximum": _runs(6), "sicks": _runs(6), "sics": _runs(6),
    "seven": _runs(7),
    # extras
    "wide": Term("extra", ExtraType.WIDE), "white": Term("extra", ExtraType.WIDE),
    "wides": Term("extra", ExtraType.WIDE),
    "noball": Term("extra", ExtraType.NO_BALL),
    "bye": Term("extra", ExtraType.BYE), "byes": Term("extra", ExtraType.BYE),
    "legbye": Term("extra", ExtraType.LEG_BYE), "legbyes": Term("extra", ExtraType.LEG_BYE),
    # specials
    "dead": Term("dead"),
    "short": Term("short"),
    "penalty": Term("penalty"), "penalties": Term("penalty"),
    # dismissals
    "bowled": _wicket(DismissalType.BOWLED), "bold": _wicket(DismissalType.BOWLED),
    "caught": _wicket(DismissalType.CAUGHT), "court": _wicket(DismissalType.CAUGHT),
    "runout": _wicket(DismissalType.RUN_OUT),
    "stumped": _wicket(DismissalType.STUMPED),
    "lbw": _wicket(DismissalType.LBW),
    "retired": _wicket(DismissalType.RETIRED),
    "out": _wicket(None), "wicket": _wicket(None), "gone": _wicket(None),
    "howzat": _wicket(None),
    # batter ends
    "striker": Term("end", "striker"),
    "nonstriker": Term("end", "non_striker"),
    # commands
    "undo": Term("undo"), "correction": Term("undo"),
    # fielder marker
    "by": Term("by"),
}

# Words that carry no meaning on their own
FILLER = {
    "a", "an", "the", "and", "ball", "run", "runs", "its", "it", "is", "that",
    "thats", "was", "off", "of", "bat", "to", "taken", "scored", "plus", "extra",
    "extras", "um", "uh", "oh", "yeah", "ok", "okay", "just", "over", "went",
}

# Plausible dismissals for a bare "out", most common first
GENERIC_DISMISSALS = [
    DismissalType.BOWLED,
    DismissalType.CAUGHT,
    DismissalType.LBW,
    DismissalType.RUN_OUT,
    DismissalType.STUMPED,
    DismissalType.HIT_WICKET,
]

_PAUSE = re.compile(r"[,.;:!?–—]+")
_STRIP = re.compile(r"[^a-z0-9\s,]")


def _tokenize(phrase: str) -> list[str]:
    text = phrase.lower().replace("-", " ").replace("'", "")
    text = _PAUSE.sub(" , ", text)
    text = _STRIP.sub(" ", text)
    return text.split()


class CommandInterpreter:
    """Stateless phrase-to-candidate interpreter.

    Every call is independent; the only context it sees is the
    ``OverContext`` passed in.
    """

    def __init__(self, rules: Optional[ScoringRules] = None):
        self.rules = rules or ScoringRules()
        self._fuzzy_vocab = [w for w in WORDS if len(w) >= FUZZY_MIN_LENGTH]

    def interpret(self, phrase: str, context: Optional[OverContext] = None) -> Interpretation:
        context = context or OverContext()
        tokens = _tokenize(phrase)
        terms, names, fuzzy_hits = self._scan(tokens)
        logger.debug("Phrase %r -> %s (names=%s, fuzzy=%d)", phrase, terms, names, fuzzy_hits)

        undo = any(t.kind == "undo" for t in terms)
        terms = [t for t in terms if t.kind != "undo"]
        confidence = max(0.5, 1.0 - 0.1 * fuzzy_hits)

        if self._is_no_comma_ball(tokens):
            return self._no_comma_ball(phrase, context, confidence)

        if not any(t.kind not in ("pause", "by", "end") for t in terms):
            if undo:
                return Interpretation(
                    kind=InterpretationKind.RESOLVED, phrase=phrase,
                    intent=Intent.UNDO, confidence=confidence,
                )
            return Interpretation(
                kind=InterpretationKind.UNRECOGNIZED, phrase=phrase,
                detail="no scoring words recognised",
            )

        candidates, detail = self._build(terms, names, context)
        intent = Intent.UNDO if undo else Intent.DELIVERY
        if undo:
            # A correction carries its replacement as candidates to confirm
            kind = InterpretationKind.RESOLVED
        elif len(candidates) == 1 and not detail:
            kind = InterpretationKind.RESOLVED
        else:
            kind = InterpretationKind.AMBIGUOUS
            confidence /= max(2, len(candidates))
        return Interpretation(
            kind=kind, phrase=phrase, intent=intent,
            candidates=candidates, confidence=confidence, detail=detail,
        )

    # ── Scanning ─────────────────────────────────────────────────────

    def _scan(self, tokens: list[str]) -> tuple[list[Term], list[str], int]:
        """Turn tokens into terms; returns (terms, raw name words, fuzzy match count)."""
        terms: list[Term] = []
        names: list[str] = []
        fuzzy_hits = 0
        longest = max(len(p) for p in PHRASES)
        i = 0
        naming = False
        while i < len(tokens):
            token = tokens[i]
            if token == ",":
                terms.append(Term("pause"))
                naming = False
                i += 1
                continue

            phrase_term = None
            for size in range(min(longest, len(tokens) - i), 1, -1):
                phrase_term = PHRASES.get(tuple(tokens[i:i + size]))
                if phrase_term is not None:
                    break
            if phrase_term is not None:
                terms.append(phrase_term)
                naming = phrase_term.kind == "wicket"
                i += size
                continue

            if token.isdigit():
                terms.append(_runs(int(token)))
                naming = False
            elif token in WORDS:
                term = WORDS[token]
                terms.append(term)
                naming = term.kind in ("by", "wicket")
            elif naming and token not in FILLER:
                names.append(token)
            elif token not in FILLER and len(token) >= FUZZY_MIN_LENGTH:
                match = difflib.get_close_matches(token, self._fuzzy_vocab, n=1, cutoff=FUZZY_CUTOFF)
                if match:
                    logger.debug("Fuzzy match %r -> %r", token, match[0])
                    terms.append(WORDS[match[0]])
                    fuzzy_hits += 1
            i += 1
        return terms, names, fuzzy_hits

    @staticmethod
    def _is_no_comma_ball(tokens: list[str]) -> bool:
        words = [t for t in tokens if t not in FILLER or t == "ball"]
        return words == ["no", ",", "ball"]

    def _no_comma_ball(self, phrase: str, context: OverContext, confidence: float) -> Interpretation:
        """"no, ball": an interrupted call, either a no-ball or a repeated dot ball."""
        dot = BallCandidate(runs_off_bat=0)
        no_ball = BallCandidate(extra_type=ExtraType.NO_BALL)
        ranked = [dot, no_ball] if context.previous_phrase else [no_ball, dot]
        return Interpretation(
            kind=InterpretationKind.AMBIGUOUS, phrase=phrase, candidates=ranked,
            confidence=confidence / 2, detail="no-ball or a repeated dot ball?",
        )

    # ── Candidate assembly ───────────────────────────────────────────

    def _build(
        self, terms: list[Term], names: list[str], context: OverContext
    ) -> tuple[list[BallCandidate], str]:
        runs: list[int] = []
        extras: list[ExtraType] = []
        dismissals: list[DismissalType] = []
        generic_wicket = False
        caught_and_bowled = False
        penalty = 0
        dead = short = False
        end: Optional[str] = None

        i = 0
        while i < len(terms):
            term = terms[i]
            if term.kind == "penalty":
                nxt = terms[i + 1] if i + 1 < len(terms) else None
                if nxt is not None and nxt.kind == "runs":
                    penalty += nxt.value
                    i += 1
                else:
                    penalty += 5
            elif term.kind == "runs" and (not runs or runs[-1] != term.value):
                runs.append(term.value)
            elif term.kind == "extra" and term.value not in extras:
                extras.append(term.value)
            elif term.kind == "wicket":
                if term.value is None:
                    generic_wicket = True
                elif term.value not in dismissals:
                    dismissals.append(term.value)
            elif term.kind == "caught_and_bowled":
                caught_and_bowled = True
                if DismissalType.CAUGHT not in dismissals:
                    dismissals.append(DismissalType.CAUGHT)
            elif term.kind == "dead":
                dead = True
            elif term.kind == "short":
                short = True
            elif term.kind == "end":
                end = term.value
            i += 1

        base: dict = {"penalty_runs": penalty}
        alternatives: list[list[dict]] = []
        notes: list[str] = []

        if dead:
            base["dead_ball"] = True
            return [BallCandidate(**base)], ""

        if len(extras) > 1:
            notes.append("more than one extra heard")
        extra_options = extras or [ExtraType.NONE]
        # Spoken later usually corrects what was said first
        run_options = list(reversed(runs)) or [None]
        if len(runs) > 1:
            notes.append(f"runs unclear ({', '.join(str(r) for r in runs)})")

        alternatives.append([
            self._outcome(extra, n, short) for extra in extra_options for n in run_options
        ])

        wicket_options = self._wicket_options(
            dismissals, generic_wicket, caught_and_bowled, names, end, extra_options, context, notes
        )
        if wicket_options:
            alternatives.append(wicket_options)

        candidates = []
        for combo in itertools.product(*alternatives):
            fields = dict(base)
            for patch in combo:
                fields.update(patch)
            if (
                fields.get("dismissal_type") == DismissalType.RETIRED
                and fields["extra_type"] == ExtraType.NONE
                and not fields.get("runs_off_bat")
            ):
                # A retirement between deliveries is not a ball
                fields["dead_ball"] = True
            candidates.append(BallCandidate(**fields))
        plausible = [c for c in candidates if self._plausible(c, context)]
        return (plausible or candidates)[:MAX_CANDIDATES], "; ".join(notes)

    def _outcome(self, extra: ExtraType, runs: Optional[int], short: bool) -> dict:
        if short and runs:
            runs -= 1  # Record the runs allowed, one less than attempted
        patch: dict = {"extra_type": extra, "short_run": short}
        if extra == ExtraType.WIDE:
            patch["extra_runs"] = self.rules.wide_runs + runs if runs else None
        elif extra == ExtraType.NO_BALL:
            patch["runs_off_bat"] = runs or 0
        elif extra in (ExtraType.BYE, ExtraType.LEG_BYE):
            patch["extra_runs"] = runs or 1
        else:
            patch["runs_off_bat"] = runs or 0
        return patch

    def _wicket_options(
        self,
        dismissals: list[DismissalType],
        generic: bool,
        caught_and_bowled: bool,
        names: list[str],
        end: Optional[str],
        extras: list[ExtraType],
        context: OverContext,
        notes: list[str],
    ) -> list[dict]:
        if not dismissals and not generic:
            return []
        if not dismissals:
            notes.append("how was the batter out?")
            kinds = [k for k in GENERIC_DISMISSALS if self._possible(k, extras, context)]
        else:
            if len(dismissals) > 1:
                notes.append("more than one dismissal heard")
            kinds = dismissals

        options: list[dict] = []
        for kind in kinds:
            fielders: list[Optional[str]] = [None]
            if kind.takes_fielder:
                if caught_and_bowled and kind == DismissalType.CAUGHT:
                    fielders = [context.bowler]
                else:
                    fielders = self._fielders(names, kind, context, notes)
            players_out: list[Optional[str]] = [None]
            if kind == DismissalType.RUN_OUT:
                players_out = self._run_out_batters(end, context, notes)
            elif end == "non_striker" and kind == DismissalType.RETIRED:
                players_out = [context.non_striker]
            for fielder, player_out in itertools.product(fielders, players_out):
                options.append({
                    "is_wicket": True,
                    "dismissal_type": kind,
                    "fielder": fielder,
                    "player_out": player_out,
                })
        return options

    def _fielders(
        self, names: list[str], kind: DismissalType, context: OverContext, notes: list[str]
    ) -> list[Optional[str]]:
        spoken = " ".join(names).strip()
        if not spoken:
            if kind == DismissalType.CAUGHT and context.require_fielder:
                notes.append("who took the catch?")
                return list(context.fielders) or [None]
            return [None]
        if not context.fielders:
            return [spoken]
        by_lower = {f.lower(): f for f in context.fielders}
        if spoken in by_lower:
            return [by_lower[spoken]]
        # A surname naming exactly one fielder is not a guess
        surname = [f for f in context.fielders if f.lower().split()[-1] == spoken.split()[-1]]
        if len(surname) == 1:
            return surname
        close = difflib.get_close_matches(spoken, list(by_lower), n=3, cutoff=0.6)
        notes.append(f"fielder {spoken!r} not certain")
        return [by_lower[c] for c in close] or surname or [spoken]

    @staticmethod
    def _run_out_batters(end: Optional[str], context: OverContext, notes: list[str]) -> list[Optional[str]]:
        if end == "striker":
            return [context.striker]
        if end == "non_striker":
            return [context.non_striker]
        notes.append("which batter was run out?")
        if context.striker and context.non_striker:
            return [context.striker, context.non_striker]
        return [None]

    @staticmethod
    def _possible(kind: DismissalType, extras: list[ExtraType], context: OverContext) -> bool:
        if context.free_hit and kind not in NO_BALL_DISMISSALS:
            return False
        if ExtraType.WIDE in extras:
            return kind in WIDE_DISMISSALS
        if ExtraType.NO_BALL in extras:
            return kind in NO_BALL_DISMISSALS
        return True

    def _plausible(self, candidate: BallCandidate, context: OverContext) -> bool:
        if candidate.dismissal_type is None:
            return True
        return self._possible(candidate.dismissal_type, [candidate.extra_type], context)
