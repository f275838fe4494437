"""
Case File Parser

A case file is plain text:

    s, p, k, d
    Bounds(i, lo, hi)
    InitialSumLowerBound(l, x)
    InitialSumUpperBound(l, x)
    MidSumUpperBound(l, m, x)
    ProvesBound(delta, x) | ProvesSumLowerBound([c0, c1, ...], x) | Contradiction()
    Subcase(<constraint>, <constraint>, ...)

Instruction names are case-insensitive; blank lines and lines starting
with '#' are ignored. Every Subcase line is one child of the root and
inherits the root's goal.
"""

import re
from pathlib import Path
from typing import List, Optional, Tuple, Union

from ..case import (
    BoxBound,
    BranchCase,
    Case,
    CaseParameters,
    Constraint,
    Contradiction,
    Goal,
    LeafCase,
    PrefixSumBound,
    ProvesBound,
    ProvesSumLowerBound,
    RangeSumBound,
    subcase_label,
)
from ..exceptions import InvariantViolation, MalformedCase
from ..solver.constraint_set import validate_constraint


_CALL = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*\((.*)\)\s*$", re.DOTALL)
_OPEN = "(["
_CLOSE = ")]"

DEFAULT_CASES_DIR = "cases"


def split_arguments(text: str) -> List[str]:
    """
    Split on commas that are not nested inside () or [].

    >>> split_arguments("Bounds(0, 0.5, 1), MidSumUpperBound(1, 3, 0.9)")
    ['Bounds(0, 0.5, 1)', 'MidSumUpperBound(1, 3, 0.9)']
    """
    if not text.strip():
        return []
    args = []
    depth = 0
    current = []
    for ch in text:
        if ch in _OPEN:
            depth += 1
        elif ch in _CLOSE:
            depth -= 1
            if depth < 0:
                raise MalformedCase(f"Unbalanced brackets in {text!r}")
        if ch == "," and depth == 0:
            args.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
    if depth != 0:
        raise MalformedCase(f"Unbalanced brackets in {text!r}")
    args.append("".join(current).strip())
    if any(not a for a in args):
        raise MalformedCase(f"Empty argument in {text!r}")
    return args


def parse_call(text: str) -> Tuple[str, List[str]]:
    """'Name(a, b)' -> ('name', ['a', 'b']). Names are lower-cased."""
    match = _CALL.match(text)
    if match is None:
        raise MalformedCase(f"Expected Name(arguments), got {text.strip()!r}")
    return match.group(1).lower(), split_arguments(match.group(2))


def _int(text: str, what: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        raise MalformedCase(f"{what} must be an integer, got {text.strip()!r}")


def _float(text: str, what: str) -> float:
    try:
        return float(text.strip())
    except ValueError:
        raise MalformedCase(f"{what} must be a number, got {text.strip()!r}")


def _arity(name: str, args: List[str], count: int):
    if len(args) != count:
        raise MalformedCase(f"{name} takes {count} arguments, got {len(args)}")


def parse_parameters(line: str) -> CaseParameters:
    """The first line: 's, p, k, d'."""
    parts = [p.strip() for p in line.split(",")]
    if len(parts) != 4:
        raise MalformedCase(f"Parameter line needs 's, p, k, d', got {len(parts)} values")
    return CaseParameters(
        threshold=_float(parts[0], "s"),
        prob_cutoff=_float(parts[1], "p"),
        max_depth=_int(parts[2], "k"),
        denominator=_int(parts[3], "d"),
    )


def parse_constraint(text: str) -> Optional[Constraint]:
    """Parse a constraint instruction, or return None if it is not one."""
    name, args = parse_call(text)
    if name == "bounds":
        _arity("Bounds", args, 3)
        return BoxBound(_int(args[0], "index"), _float(args[1], "lo"), _float(args[2], "hi"))
    if name == "initialsumlowerbound":
        _arity("InitialSumLowerBound", args, 2)
        return PrefixSumBound(_int(args[0], "length"), lower=_float(args[1], "bound"))
    if name == "initialsumupperbound":
        _arity("InitialSumUpperBound", args, 2)
        return PrefixSumBound(_int(args[0], "length"), upper=_float(args[1], "bound"))
    if name == "midsumupperbound":
        _arity("MidSumUpperBound", args, 3)
        start, end = _int(args[0], "start"), _int(args[1], "end")
        if start >= end:
            raise InvariantViolation(f"MidSumUpperBound needs start < end, got {start} >= {end}")
        return RangeSumBound(start, end, _float(args[2], "bound"))
    return None


def parse_goal(text: str) -> Optional[Goal]:
    """Parse a goal instruction, or return None if it is not one."""
    name, args = parse_call(text)
    if name == "provesbound":
        _arity("ProvesBound", args, 2)
        return ProvesBound(delta=_float(args[0], "delta"), target=_float(args[1], "target"))
    if name == "provessumlowerbound":
        if len(args) < 2:
            raise MalformedCase("ProvesSumLowerBound needs coefficients and a bound")
        if args[0].startswith("["):
            _arity("ProvesSumLowerBound", args, 2)
            if not args[0].endswith("]"):
                raise MalformedCase(f"Unterminated coefficient list {args[0]!r}")
            coef_texts = split_arguments(args[0][1:-1])
        else:
            coef_texts = args[:-1]
        coefs = tuple(_int(c, "coefficient") for c in coef_texts)
        return ProvesSumLowerBound(coefs, _float(args[-1], "bound"))
    if name == "contradiction":
        _arity("Contradiction", args, 0)
        return Contradiction()
    return None


def parse_case(text: str, name: str = "case") -> Case:
    """
    Parse case text into a Case.

    Raises:
        MalformedCase: syntax errors and unknown instructions (with line number)
        InvariantViolation: zero or several goals, a goal inside Subcase,
            indices that do not fit k
    """
    params = None
    constraints: List[Constraint] = []
    subcases: List[List[Constraint]] = []
    goal = None
    goal_line = None

    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        try:
            if params is None:
                params = parse_parameters(line)
                continue

            instruction, args = parse_call(line)
            if instruction == "subcase":
                subcase = []
                for arg in args:
                    constraint = parse_constraint(arg)
                    if constraint is None:
                        if parse_goal(arg) is not None:
                            raise InvariantViolation(
                                f"line {number}: a Subcase may not contain a goal ({arg!r})"
                            )
                        raise MalformedCase(f"Unknown instruction {arg!r} in Subcase")
                    validate_constraint(constraint, params.max_depth)
                    subcase.append(constraint)
                subcases.append(subcase)
                continue

            constraint = parse_constraint(line)
            if constraint is not None:
                validate_constraint(constraint, params.max_depth)
                constraints.append(constraint)
                continue

            parsed_goal = parse_goal(line)
            if parsed_goal is None:
                raise MalformedCase(f"Unknown instruction {instruction!r}")
            if goal is not None:
                raise InvariantViolation(
                    f"line {number}: only one goal per case (first goal on line {goal_line})"
                )
            goal = parsed_goal
            goal_line = number
        except MalformedCase as e:
            if e.line_number is not None:
                raise
            raise MalformedCase(str(e), line_number=number, line=raw) from None

    if params is None:
        raise MalformedCase("Case file is empty")
    if goal is None:
        raise InvariantViolation(f"Case {name!r} has no goal")

    return Case(name=name, params=params, root=build_tree(constraints, subcases, goal), source=text)


def build_tree(constraints: List[Constraint], subcases: List[List[Constraint]], goal: Goal):
    """Root leaf, or a root branch whose subcases inherit the goal."""
    if not subcases:
        return LeafCase(tuple(constraints), goal)
    children = tuple(
        LeafCase(tuple(sub), goal, label=subcase_label(i))
        for i, sub in enumerate(subcases)
    )
    return BranchCase(tuple(constraints), children)


def case_path(name: str, cases_dir: Union[str, Path] = DEFAULT_CASES_DIR) -> Path:
    """cases/<name>.txt; an existing path is used as given."""
    candidate = Path(name)
    if candidate.suffix == ".txt" and candidate.exists():
        return candidate
    return Path(cases_dir) / f"{name}.txt"


def load_case(name: str, cases_dir: Union[str, Path] = DEFAULT_CASES_DIR) -> Case:
    """Read and parse cases/<name>.txt."""
    path = case_path(name, cases_dir)
    with open(path, 'r') as f:
        text = f.read()
    return parse_case(text, name=path.stem)
