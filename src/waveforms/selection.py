"""Ordered clinical rules that map a patient snapshot to a waveform pattern.

Each generator owns a tuple of :class:`SelectionRule` built from the
thresholds in ``config/selection_rules.yaml``. Rules are evaluated top to
bottom and the first whose predicate holds decides the outcome, so every
rule can be inspected and tested on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence, TypeVar

import numpy as np
import yaml

from src.monitor_system.exceptions import ConfigurationError
from src.monitor_system.schemas import PatientState

_DEFAULT_RULES_PATH = Path(__file__).resolve().parents[2] / "config" / "selection_rules.yaml"

T = TypeVar("T")


def load_selection_rules(path: str | Path | None = None) -> dict:
    """Read the selection thresholds YAML."""
    p = Path(path) if path is not None else _DEFAULT_RULES_PATH
    with open(p) as f:
        return yaml.safe_load(f)


@dataclass(frozen=True)
class PatternChoice:
    """Outcome of a selection rule.

    Attributes:
        pattern: tag of the pattern to activate.
        options: options record matching *pattern*.
        updates: parameter overrides applied when the choice is taken.
    """

    pattern: Enum
    options: Any
    updates: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class SelectionRule:
    """One (predicate, outcome) pair of a selection cascade."""

    name: str
    applies: Callable[[PatientState], bool]
    choose: Callable[[PatientState, np.random.Generator], PatternChoice]


def always(state: PatientState) -> bool:
    return True


def first_match(
    rules: Sequence[SelectionRule],
    state: PatientState,
    rng: np.random.Generator,
) -> tuple[SelectionRule, PatternChoice]:
    """Return the first rule whose predicate holds and the choice it makes."""
    for rule in rules:
        if rule.applies(state):
            return rule, rule.choose(state, rng)
    raise ConfigurationError("Selection rules have no default outcome")


def weighted_choice(rng: np.random.Generator, weighted: Sequence[tuple[T, float]]) -> T:
    """Pick one item using a single uniform draw against cumulative weights."""
    total = sum(weight for _, weight in weighted)
    draw = rng.random() * total
    cumulative = 0.0
    for item, weight in weighted:
        cumulative += weight
        if draw < cumulative:
            return item
    return weighted[-1][0]
