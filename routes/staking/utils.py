# routes/staking/utils.py
from typing import Dict, Any
from engine.models import Stake, StakingRewardEntry
from utils.clock import format_timestamp
from utils.price import PriceQuote
from utils.units import format_units

def format_stake_data(stake: Stake) -> Dict[str, Any]:
    """Format a stake for API response"""
    return {
        "id": stake.id,
        "user_id": stake.user_id,
        "amount": format_units(stake.locked_amount),
        "price_at_open": f"{stake.price_at_open:.2f}",
        "required_hash_power": f"{stake.required_hash_power:.2f}",
        "apr_percent": str(stake.apr_percent),
        "lock_months": stake.lock_months,
        "daily_reward": format_units(stake.daily_reward),
        "total_rewards_paid": format_units(stake.total_rewards_paid),
        "opened_at": format_timestamp(stake.opened_at),
        "unlocks_at": format_timestamp(stake.unlocks_at),
        "status": stake.status.value,
        "last_reward_at": format_timestamp(stake.last_reward_at),
    }

def format_price_data(quote: PriceQuote) -> Dict[str, Any]:
    return {
        "asset": quote.asset,
        "price": f"{quote.price:.2f}",
        "as_of": format_timestamp(quote.as_of),
        "source": quote.source,
        "stale": quote.stale,
    }

def format_reward_entry(entry: StakingRewardEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "stake_id": entry.stake_id,
        "amount": format_units(entry.amount),
        "price_at_payment": f"{entry.price_at_payment:.2f}",
        "paid_at": format_timestamp(entry.paid_at),
    }
