"""
Lenient version ordering and the two range syntaxes found in mod metadata:
Fabric-style predicates (`>=1.2 <2`, `~1.20`, `1.20.x`) and maven ranges
(`[47,)`, `[1.20,1.21)`).
"""

import re
from functools import total_ordering
from typing import Iterable, Optional, Union

RELEASE = re.compile(r"^(\d+(?:\.\d+)*)(.*)$")
TOKEN = re.compile(r"\d+|[a-zA-Z]+")
WILDCARDS = ("x", "X", "*")

# Qualifiers ordered before the plain release
PRE_RELEASE = {
    "alpha": 0,
    "a": 0,
    "beta": 1,
    "b": 1,
    "milestone": 2,
    "m": 2,
    "pre": 3,
    "rc": 4,
    "c": 4,
    "snapshot": 5,
}


def _tokens(text: str) -> tuple:
    keys = []
    for token in TOKEN.findall(text):
        if token.isdigit():
            keys.append((1, int(token), ""))
        else:
            token = token.lower()
            keys.append((0, PRE_RELEASE.get(token, len(PRE_RELEASE)), token))
    return tuple(keys)


@total_ordering
class ModVersion:
    """
    A version string ordered the way mod loaders order them. Trailing zero
    components are insignificant, build metadata after `+` is ignored, and
    a suffix starting with a pre-release word (alpha, beta, rc, ...) sorts
    before the plain release while any other suffix sorts after it.
    """

    def __init__(self, text: str):
        self.text = text.strip()
        core = self.text.split("+", 1)[0]
        match = RELEASE.match(core)
        if match:
            numbers, rest = match.groups()
            self.numbers = tuple(int(n) for n in numbers.split("."))
        else:
            self.numbers, rest = (), core
        rest = rest.lstrip("-._")
        release = list(self.numbers)
        while release and release[-1] == 0:
            release.pop()
        suffix = _tokens(rest)
        if not suffix:
            kind = 1
        elif suffix[0][0] == 0 and suffix[0][1] < len(PRE_RELEASE):
            kind = 0
        else:
            kind = 2
        self._key = (tuple(release), kind, suffix)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ModVersion):
            return NotImplemented
        return self._key == other._key

    def __lt__(self, other: "ModVersion") -> bool:
        return self._key < other._key

    def __hash__(self) -> int:
        return hash(self._key)

    def __repr__(self) -> str:
        return f"ModVersion({self.text!r})"

    def __str__(self) -> str:
        return self.text


VersionLike = Union[str, ModVersion]


def _version(value: VersionLike) -> ModVersion:
    return value if isinstance(value, ModVersion) else ModVersion(value)


Bound = tuple[str, ModVersion]


def _bound_matches(bound: Bound, version: ModVersion) -> bool:
    op, target = bound
    if op == "prefix":
        return version.numbers[: len(target.numbers)] == target.numbers
    if op == "=":
        return version == target
    if op == ">=":
        return version >= target
    if op == ">":
        return version > target
    if op == "<=":
        return version <= target
    if op == "<":
        return version < target
    raise ValueError(f"Unknown comparison '{op}'")


class VersionRange:
    """
    A set of accepted versions: any of `alternatives` must hold, and each
    alternative is a conjunction of bounds. An empty alternative accepts
    every version.
    """

    def __init__(self, text: str, alternatives: Iterable[Iterable[Bound]]):
        self.text = text
        self.alternatives = [list(a) for a in alternatives]

    @classmethod
    def any(cls) -> "VersionRange":
        return cls("*", [[]])

    def matches(self, version: VersionLike) -> bool:
        version = _version(version)
        return any(
            all(_bound_matches(bound, version) for bound in alternative)
            for alternative in self.alternatives
        )

    def __str__(self) -> str:
        return self.text

    def __repr__(self) -> str:
        return f"VersionRange({self.text!r})"

    @classmethod
    def fabric(cls, spec: Union[str, list[str]]) -> "VersionRange":
        """
        Parses a Fabric version predicate. A list accepts a version matching
        any entry; inside one entry, space-separated terms must all match.
        """
        entries = [spec] if isinstance(spec, str) else list(spec)
        alternatives = [
            [b for term in entry.split() for b in _fabric_term(term)]
            for entry in entries
        ]
        text = " || ".join(entries) if entries else "*"
        return cls(text, alternatives or [[]])

    @classmethod
    def maven(cls, spec: str) -> "VersionRange":
        """
        Parses a maven version range. A bare version is a soft requirement
        and accepts anything.

        Raises:
            ValueError: Unbalanced brackets.
        """
        text = spec.strip()
        if not text or text == "*" or text[0] not in "[(":
            return cls(text or "*", [[]])
        alternatives = []
        for lower, body, upper in re.findall(r"([\[(])([^\])]*)([\])])", text):
            alternatives.append(_maven_interval(lower, body, upper, text))
        if not alternatives:
            raise ValueError(f"Invalid version range '{spec}'")
        return cls(text, alternatives)


def _fabric_term(term: str) -> list[Bound]:
    if term in WILDCARDS:
        return []
    for op in (">=", "<=", ">", "<", "=", "~", "^"):
        if term.startswith(op):
            value = term[len(op):]
            break
    else:
        op, value = "=", term

    parts = value.split(".")
    if any(p in WILDCARDS for p in parts):
        fixed = []
        for part in parts:
            if part in WILDCARDS:
                break
            fixed.append(part)
        return [("prefix", ModVersion(".".join(fixed)))] if fixed else []

    version = ModVersion(value)
    if op == "~":
        numbers = list(version.numbers) or [0]
        upper = [numbers[0], numbers[1] + 1] if len(numbers) > 1 else [numbers[0] + 1]
        return [(">=", version), ("<", ModVersion(".".join(map(str, upper))))]
    if op == "^":
        upper = (version.numbers or (0,))[0] + 1
        return [(">=", version), ("<", ModVersion(str(upper)))]
    return [(op, version)]


def _maven_interval(lower: str, body: str, upper: str, spec: str) -> list[Bound]:
    if "," not in body:
        if lower != "[" or upper != "]":
            raise ValueError(f"Invalid version range '{spec}'")
        return [("=", ModVersion(body))]
    low, high = (part.strip() for part in body.split(",", 1))
    bounds: list[Bound] = []
    if low:
        bounds.append((">=" if lower == "[" else ">", ModVersion(low)))
    if high:
        bounds.append(("<=" if upper == "]" else "<", ModVersion(high)))
    return bounds


def parse_version(value: Optional[str]) -> Optional[ModVersion]:
    return ModVersion(value) if value else None
