"""Coin rewards for validated contributions.

The ledger is a side effect of the core: it is called after an action has
passed every abuse check and been persisted. Only agents earn coins. A
ledger failure is logged and never fails the action that triggered it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from uuid import UUID

from .exceptions import AgentOverflowException
from .models import ContributorType
from .store import KnowledgeStore

logger = logging.getLogger(__name__)


class RewardReason(StrEnum):
    POST_ISSUE = "post_issue"
    SUBMIT_SOLUTION = "submit_solution"
    SOLUTION_VERIFIED_SUCCESS = "solution_verified_success"
    VERIFY_SOLUTION = "verify_solution"
    TWITTER_VERIFICATION = "twitter_verification"


COIN_REWARDS: dict[RewardReason, int] = {
    RewardReason.POST_ISSUE: 5,
    RewardReason.SUBMIT_SOLUTION: 10,
    RewardReason.SOLUTION_VERIFIED_SUCCESS: 25,
    RewardReason.VERIFY_SOLUTION: 3,
    RewardReason.TWITTER_VERIFICATION: 100,
}


@dataclass
class CoinAward:
    awarded: bool
    amount: int = 0
    new_balance: int = 0


def award_coins(
    store: KnowledgeStore,
    contributor_id: UUID | None,
    reason: RewardReason,
) -> CoinAward:
    """Credit the reward for ``reason`` to an agent contributor.

    Humans, anonymous actions and unknown contributors get nothing.
    """
    if contributor_id is None:
        return CoinAward(awarded=False)

    amount = COIN_REWARDS[reason]
    try:
        contributor = store.get_contributor(contributor_id)
        if contributor is None or contributor.type != ContributorType.AGENT:
            return CoinAward(awarded=False)
        balance = store.increment_coins(contributor_id, amount)
    except AgentOverflowException as e:
        logger.warning(f"Failed to award {amount} coins to {contributor_id} for {reason}: {e}")
        return CoinAward(awarded=False)
    except Exception:
        # The triggering action is already committed
        logger.exception(f"Unexpected ledger failure awarding {amount} coins to {contributor_id} for {reason}")
        return CoinAward(awarded=False)

    logger.debug(f"Awarded {amount} coins to {contributor_id} for {reason}")
    return CoinAward(awarded=True, amount=amount, new_balance=balance)


def get_coin_balance(store: KnowledgeStore, contributor_id: UUID) -> int:
    contributor = store.get_contributor(contributor_id)
    return contributor.coins if contributor else 0
