# routes/staking/routes.py
from fastapi import APIRouter, Depends, Query
from fastapi_cache.decorator import cache
from typing import Optional

from dependencies import get_economy, verify_api_key
from engine.economy import Economy
from engine.errors import INVALID_AMOUNT, INVALID_LOCK_PERIOD, StakeError
from utils.cache import STAKING_CACHE
from utils.units import format_units, to_units

from routes.staking.models import (
    AprQuote, PriceOut, StakeOut, StakeRequest, StakeRewardHistory, UserStakes,
)
from routes.staking.utils import format_price_data, format_reward_entry, format_stake_data

router = APIRouter(dependencies=[Depends(verify_api_key)])

@router.get("/prices", response_model=PriceOut)
async def current_price(economy: Economy = Depends(get_economy)):
    quote = await economy.price_oracle.current_price(economy.staking.asset)
    return format_price_data(quote)

@router.get("/apr", response_model=AprQuote)
@cache(expire=300, key_builder=STAKING_CACHE)
async def apr_quote(
    months: Optional[int] = Query(None, ge=1, le=120),
    economy: Economy = Depends(get_economy),
):
    """APR offered for a lock duration, plus every option of the curve"""
    curve = economy.staking.curve
    quote = {
        "curve": curve.name,
        "months": months,
        "apr": None,
        "options": [{"months": o["months"], "apr": str(o["apr"])} for o in curve.options()],
    }
    if months is not None:
        if not curve.accepts(months):
            raise StakeError(f"Lock period of {months} months is not offered", INVALID_LOCK_PERIOD)
        quote["apr"] = str(curve.apr_for(months))
    return quote

@router.get("/{user_id}/stakes", response_model=UserStakes)
async def user_stakes(user_id: str, economy: Economy = Depends(get_economy)):
    summary = await economy.staking.user_stakes(user_id)
    quote = await economy.price_oracle.current_price(economy.staking.asset)
    return {
        "user_id": user_id,
        "asset": economy.staking.asset,
        "current_price": f"{quote.price:.2f}",
        "total_staked": format_units(summary["total_staked"]),
        "total_daily_rewards": format_units(summary["total_daily_rewards"]),
        "total_rewards_paid": format_units(summary["total_rewards_paid"]),
        "stakes": [format_stake_data(s) for s in summary["stakes"]],
    }

@router.post("/{user_id}/stakes", response_model=StakeOut)
async def open_stake(user_id: str, body: StakeRequest, economy: Economy = Depends(get_economy)):
    try:
        amount = to_units(body.amount)
    except ValueError:
        raise StakeError(f"Invalid amount: {body.amount}", INVALID_AMOUNT)
    stake = await economy.staking.open_stake(
        user_id, amount, body.lock_months, apr_percent=body.apr_percent
    )
    return format_stake_data(stake)

@router.get("/{user_id}/stakes/{stake_id}/rewards", response_model=StakeRewardHistory)
async def stake_rewards(user_id: str, stake_id: str, economy: Economy = Depends(get_economy)):
    entries = await economy.staking.reward_history(user_id, stake_id)
    return {
        "stake_id": stake_id,
        "count": len(entries),
        "total_paid": format_units(sum(e.amount for e in entries)),
        "rewards": [format_reward_entry(e) for e in entries],
    }
