"""Rune carving and checking.

A rune is the bearer token a device presents to its node. Carving adds
restrictions to an existing rune, so a carved rune can only ever do less
than the rune it came from, and the holder of the master secret can
still verify it.

Usage:
    master = runes.MasterRune(secret)
    token = RuneFactory.carve(master, [DefRules.READ_ONLY])
    check_rune(master, token, Context(method="GetInfo"))
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Sequence, Union

import runes

from glclient.errors import RuneError

logger = logging.getLogger(__name__)


class DefRules(str, Enum):
    """Predefined restrictions."""
    READ_ONLY = "readonly"
    PAY = "pay"

    @property
    def alternatives(self) -> list[tuple[str, str, str]]:
        """(field, condition, value) triples, any of which satisfies the rule."""
        return list(_ALTERNATIVES[self])

    def __str__(self) -> str:
        return self.value


_ALTERNATIVES = {
    DefRules.READ_ONLY: (("method", "^", "Get"), ("method", "^", "List")),
    DefRules.PAY: (("method", "=", "pay"),),
}


@dataclass(frozen=True)
class AnyOf:
    """Several rules merged into one restriction that holds if any of them does."""
    rules: tuple[DefRules, ...]

    @property
    def alternatives(self) -> list[tuple[str, str, str]]:
        return [alt for rule in self.rules for alt in rule.alternatives]

    def __str__(self) -> str:
        return "|".join(str(rule) for rule in self.rules)


Rule = Union[DefRules, AnyOf]


def add(*rules: DefRules) -> AnyOf:
    """Combine rules into a single disjunction, e.g. read-only or pay."""
    if not rules:
        raise ValueError("At least one rule is required")
    return AnyOf(tuple(rules))


def _restriction(rule: Rule) -> runes.Restriction:
    return runes.Restriction(
        [runes.Alternative(name, cond, value) for name, cond, value in rule.alternatives]
    )


class RuneFactory:
    """Carves restricted runes out of an origin rune."""

    @staticmethod
    def carve(origin: runes.Rune, rules: Sequence[Rule]) -> str:
        """Derive a rune from origin with one restriction per rule.

        All restrictions must hold for the carved rune to authorize a call.

        Args:
            origin: Master rune or any rune derived from it
            rules: Rules to append

        Returns:
            Carved rune, URL-safe base64 encoded
        """
        carved = runes.Rune.from_base64(origin.to_base64())
        for rule in rules:
            carved.add_restriction(_restriction(rule))

        logger.debug(f"Carved rune with {', '.join(str(r) for r in rules) or 'no'} restrictions")
        return carved.to_base64()


@dataclass
class Context:
    """Attributes of a request, checked against a rune's restrictions.

    Empty fields count as absent, so a ``pubkey!`` restriction holds for
    a request without a pubkey.
    """
    method: str = ""
    pubkey: str = ""
    unique_id: str = ""
    time: float = field(default_factory=time.time)

    def values(self) -> dict[str, Any]:
        values: dict[str, Any] = {"time": int(self.time)}
        if self.method:
            values["method"] = self.method
        if self.pubkey:
            values["pubkey"] = self.pubkey
        if self.unique_id:
            values[""] = self.unique_id
        return values


def check_rune(master: runes.MasterRune, rune: str, context: Context) -> None:
    """Verify that rune was carved from master and allows this request.

    Raises:
        RuneError: With the reason the rune was refused
    """
    try:
        ok, reason = master.check_with_reason(rune, context.values())
    except ValueError as e:
        raise RuneError(f"Malformed rune: {e}") from e

    if not ok:
        logger.debug(f"Rune refused for method {context.method or '-'}: {reason}")
        raise RuneError(f"Rune refused: {reason}")
