# routes/mining/utils.py
from typing import Dict, Any
from engine.models import Claim, MinerActivity, TickResult
from utils.clock import format_timestamp
from utils.units import format_units

def format_claim_data(claim: Claim) -> Dict[str, Any]:
    """Format a claim for API response"""
    return {
        "id": claim.id,
        "block_number": claim.block_number,
        "block_height": claim.block_height,
        "tx_hash": claim.tx_hash,
        "reward": format_units(claim.reward),
        "created_at": format_timestamp(claim.created_at),
        "expires_at": format_timestamp(claim.expires_at),
        "claimed": claim.claimed,
        "claimed_at": format_timestamp(claim.claimed_at),
    }

def format_activity_data(activity: MinerActivity) -> Dict[str, Any]:
    return {
        "user_id": activity.user_id,
        "last_claim_time": format_timestamp(activity.last_claim_time),
        "total_claims": activity.total_claims,
        "missed_claims": activity.missed_claims,
        "is_active": activity.is_active,
    }

def format_tick_data(result: TickResult) -> Dict[str, Any]:
    block = result.block
    return {
        "period": result.period,
        "produced": result.produced,
        "block_number": block.number if block else None,
        "block_height": block.height if block else None,
        "reward": format_units(block.reward) if block else None,
        "claims_created": result.claims_created,
        "expired_swept": result.expired_swept,
        "stakes_paid": result.stakes_paid,
        "stakes_matured": result.stakes_matured,
        "blocks_recovered": result.blocks_recovered,
        "skipped_reason": result.skipped_reason,
    }
