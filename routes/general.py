# routes/general.py
from fastapi import APIRouter, Depends
from fastapi_cache.decorator import cache

from dependencies import get_economy, verify_api_key
from engine.economy import Economy
from utils.cache import NETWORK_CACHE, SUPPLY_CACHE
from utils.clock import format_timestamp
from utils.units import format_units

router = APIRouter()

@router.get("/")
async def root():
    return {"message": "Welcome to the HashWave API"}

@router.get("/supply", dependencies=[Depends(verify_api_key)])
@cache(expire=30, key_builder=SUPPLY_CACHE)
async def supply(economy: Economy = Depends(get_economy)):
    """Current reward, block number, total supply and halving countdown"""
    metrics = await economy.supply.metrics()
    halving = metrics["halving_progress"]
    return {
        "asset": economy.supply.reward_asset,
        "current_block_reward": format_units(metrics["current_block_reward"]),
        "block_number": metrics["block_number"],
        "total_blocks": metrics["total_blocks"],
        "total_mined": format_units(metrics["total_mined"]),
        "circulating": format_units(metrics["circulating"]),
        "max_supply": format_units(metrics["max_supply"]),
        "percentage_mined": str(metrics["percentage_mined"]),
        "halving": {
            "current": halving["current"],
            "next_halving": halving["next_halving"],
            "blocks_remaining": halving["blocks_remaining"],
        },
    }

@router.get("/network", dependencies=[Depends(verify_api_key)])
@cache(expire=30, key_builder=NETWORK_CACHE)
async def network(economy: Economy = Depends(get_economy)):
    """Network hash power, active miners and the latest block"""
    total_hash_power = await economy.storage.total_hash_power()
    active_miners = await economy.activity.active_miner_count()
    latest = await economy.storage.latest_block()
    return {
        "total_hash_power": str(total_hash_power),
        "active_miners": active_miners,
        "latest_block": {
            "number": latest.number,
            "height": latest.height,
            "reward": format_units(latest.reward),
            "total_hash_power": str(latest.total_hash_power),
            "produced_at": format_timestamp(latest.produced_at),
            "distributed": latest.distributed,
        } if latest else None,
        "storage": economy.storage.name,
    }
