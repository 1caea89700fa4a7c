"""
Collision Resolver.

A selector a facet wants to add may already be served by another facet of
the diamond. Each such collision is settled by a policy: replace the existing
registration, skip the selector, or abort the upgrade.
"""

import sys
from typing import Awaitable, Callable, Dict, List, Mapping, Optional, TextIO

from diamond_upgrader.api.services.diff_engine import FacetDiff
from diamond_upgrader.core.config import ZERO_ADDRESS
from diamond_upgrader.core.exceptions import CollisionError
from diamond_upgrader.core.logging import get_logger
from diamond_upgrader.domain.models.upgrade_plan import CollisionChoice
from diamond_upgrader.infrastructure.blockchain.selectors import normalize_selector

logger = get_logger(__name__)

# (selector, signature, current facet address, candidate facet name) -> choice
CollisionPolicy = Callable[[str, str, str, str], CollisionChoice]
FacetAddressLookup = Callable[[str], Awaitable[str]]


def fail_on_collision(selector: str, signature: str, existing_facet: str, candidate: str) -> CollisionChoice:
    raise CollisionError(
        selector,
        f"Selector {selector} ({signature}) of {candidate} is already registered on facet {existing_facet}",
        details={"signature": signature, "existing_facet": existing_facet, "candidate": candidate},
    )


class StaticCollisionPolicy:
    """Answers collisions from preset per-facet decisions."""

    def __init__(
        self,
        resolutions: Mapping[str, Mapping[str, CollisionChoice]],
        fallback: Optional[CollisionPolicy] = None,
    ):
        self.resolutions: Dict[str, Dict[str, CollisionChoice]] = {
            facet: {normalize_selector(key): CollisionChoice(choice) for key, choice in choices.items()}
            for facet, choices in resolutions.items()
        }
        self.fallback = fallback or fail_on_collision

    def __call__(self, selector: str, signature: str, existing_facet: str, candidate: str) -> CollisionChoice:
        choice = self.resolutions.get(candidate, {}).get(selector)
        if choice is None:
            return self.fallback(selector, signature, existing_facet, candidate)
        logger.info(f"Collision on {signature} resolved from plan: {choice.value}")
        return choice


class InteractiveCollisionPolicy:
    """Asks the operator on the terminal, a bounded number of times."""

    ANSWERS = {
        "r": CollisionChoice.REPLACE,
        "replace": CollisionChoice.REPLACE,
        "s": CollisionChoice.SKIP,
        "skip": CollisionChoice.SKIP,
    }

    def __init__(
        self,
        max_attempts: int = 3,
        input_fn: Callable[[str], str] = input,
        output: TextIO = sys.stderr,
    ):
        self.max_attempts = max_attempts
        self.input_fn = input_fn
        self.output = output

    def __call__(self, selector: str, signature: str, existing_facet: str, candidate: str) -> CollisionChoice:
        prompt = (
            f"Selector {selector} ({signature}) is already registered on facet {existing_facet}. "
            f"Do you want to (r)eplace or (s)kip it for {candidate}? "
        )
        for _ in range(self.max_attempts):
            answer = self.input_fn(prompt).strip().lower()
            if answer in self.ANSWERS:
                return self.ANSWERS[answer]
            print("Invalid response!", file=self.output)

        raise CollisionError(
            selector,
            f"No valid answer for collision on {signature} after {self.max_attempts} attempts",
            details={"signature": signature, "existing_facet": existing_facet, "candidate": candidate},
        )


def _claimed_elsewhere(selector: str, diff: FacetDiff, diffs: List[FacetDiff]) -> Optional[FacetDiff]:
    for other in diffs:
        if other is diff or other.removal:
            continue
        if selector in other.to_add or selector in other.to_replace:
            return other
    return None


def _vacated_by(selector: str, owner: str, diff: FacetDiff, diffs: List[FacetDiff]) -> Optional[FacetDiff]:
    for other in diffs:
        if other is diff or selector not in other.to_remove:
            continue
        if other.old_address and other.old_address.lower() == owner.lower():
            return other
    return None


async def resolve_collisions(
    diffs: List[FacetDiff],
    facet_address: FacetAddressLookup,
    policy: CollisionPolicy = fail_on_collision,
) -> List[FacetDiff]:
    """
    Settle every collision among the selectors the plan adds.

    Selectors are checked one at a time against the live dispatch table.
    A selector whose current owner drops it in this same plan is moved to
    the candidate's replace list and taken out of the owner's remove list.
    Otherwise the policy decides: replace moves the selector from add to
    replace, skip moves it to skipped.

    Args:
        diffs: Facet diffs in plan order, updated in place
        facet_address: Lookup of the facet currently serving a selector
        policy: Collision policy

    Returns:
        The resolved diffs

    Raises:
        CollisionError: if two facets of the plan claim the same selector, or
            the policy aborts
    """
    for diff in diffs:
        if diff.removal:
            continue
        for selector in list(diff.to_add):
            signature = diff.signature_of(selector)

            other = _claimed_elsewhere(selector, diff, diffs)
            if other is not None:
                raise CollisionError(
                    selector,
                    f"Selector {selector} ({signature}) is claimed by both {diff.facet_name} "
                    f"and {other.facet_name}",
                    details={"facets": [diff.facet_name, other.facet_name]},
                )

            owner = await facet_address(selector)
            if not owner or owner.lower() == ZERO_ADDRESS:
                continue

            diff.to_add.remove(selector)

            vacating = _vacated_by(selector, owner, diff, diffs)
            if vacating is not None:
                vacating.to_remove.remove(selector)
                diff.to_replace.append(selector)
                logger.info(
                    f"{signature} moves from {vacating.facet_name} to {diff.facet_name}"
                )
                continue

            choice = policy(selector, signature, owner, diff.facet_name)
            if choice == CollisionChoice.REPLACE:
                diff.to_replace.append(selector)
            else:
                diff.skipped.append(selector)
            logger.info(f"Collision on {signature} for {diff.facet_name}: {choice.value}")

    return diffs
