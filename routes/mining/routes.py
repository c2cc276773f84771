# routes/mining/routes.py
from fastapi import APIRouter, Depends
from typing import List

from dependencies import get_economy, limit_claims, verify_api_key
from engine.economy import Economy
from utils.logging import logger
from utils.units import format_units

from routes.mining.models import ClaimAllOut, ClaimOut, MinerStatus, MiningStatus, PendingClaims, TickOut
from routes.mining.utils import format_activity_data, format_claim_data, format_tick_data

router = APIRouter(dependencies=[Depends(verify_api_key)])

@router.get("/miners", response_model=List[MinerStatus])
async def list_miners(economy: Economy = Depends(get_economy)):
    """Claim activity of every miner that has opted in"""
    miners = await economy.activity.miners_status()
    return [format_activity_data(a) for a in miners]

@router.post("/tick", response_model=TickOut)
async def run_tick(economy: Economy = Depends(get_economy)):
    """Run any pending scheduler work now"""
    result = await economy.scheduler.run_pending()
    logger.info(f"Manual tick for period {result.period}: produced={result.produced}")
    return format_tick_data(result)

@router.get("/{user_id}/claims", response_model=PendingClaims)
async def pending_claims(user_id: str, economy: Economy = Depends(get_economy)):
    claims = await economy.claims.pending_claims(user_id)
    return {
        "user_id": user_id,
        "count": len(claims),
        "total_pending": format_units(sum(c.reward for c in claims)),
        "claims": [format_claim_data(c) for c in claims],
    }

@router.post(
    "/{user_id}/claims/{claim_id}",
    response_model=ClaimOut,
    dependencies=[Depends(limit_claims)],
)
async def claim_one(user_id: str, claim_id: str, economy: Economy = Depends(get_economy)):
    claim = await economy.claims.claim_one(claim_id, user_id)
    return format_claim_data(claim)

@router.post(
    "/{user_id}/claim-all",
    response_model=ClaimAllOut,
    dependencies=[Depends(limit_claims)],
)
async def claim_all(user_id: str, economy: Economy = Depends(get_economy)):
    result = await economy.claims.claim_all(user_id)
    return {
        "count": result.count,
        "total_reward": format_units(result.total_reward),
        "nothing_to_claim": result.nothing_to_claim,
        "claims": [format_claim_data(c) for c in result.claims],
    }

@router.post("/{user_id}/start", response_model=MiningStatus)
async def start_mining(user_id: str, economy: Economy = Depends(get_economy)):
    await economy.activity.start_mining(user_id)
    return await mining_status(user_id, economy)

@router.get("/{user_id}/status", response_model=MiningStatus)
async def mining_status(user_id: str, economy: Economy = Depends(get_economy)):
    state = await economy.activity.mining_state(user_id)
    return {
        "user_id": state["user_id"],
        "state": state["state"].value,
        "first_eligible_period": state["first_eligible_period"],
        "hash_power": str(state["hash_power"]),
        "is_active": state["is_active"],
    }
