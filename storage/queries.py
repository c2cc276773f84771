# storage/queries.py

SCHEMA = """
    CREATE TABLE IF NOT EXISTS system_settings (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );

    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        username TEXT,
        hash_power NUMERIC(20, 2) NOT NULL DEFAULT 0,
        base_hash_power NUMERIC(20, 2) NOT NULL DEFAULT 0,
        mining_started_at TIMESTAMPTZ
    );

    CREATE TABLE IF NOT EXISTS user_balances (
        user_id TEXT NOT NULL REFERENCES users(id),
        asset TEXT NOT NULL,
        amount BIGINT NOT NULL DEFAULT 0,
        PRIMARY KEY (user_id, asset)
    );

    CREATE TABLE IF NOT EXISTS mining_blocks (
        height BIGINT PRIMARY KEY,
        block_number INTEGER NOT NULL,
        reward BIGINT NOT NULL,
        total_hash_power NUMERIC(24, 2) NOT NULL,
        period BIGINT NOT NULL UNIQUE,
        produced_at TIMESTAMPTZ NOT NULL,
        allocations JSONB,
        distributed BOOLEAN NOT NULL DEFAULT FALSE
    );
    -- Tables created before allocation snapshots were recorded count as settled
    ALTER TABLE mining_blocks ADD COLUMN IF NOT EXISTS allocations JSONB;
    ALTER TABLE mining_blocks ADD COLUMN IF NOT EXISTS distributed BOOLEAN NOT NULL DEFAULT TRUE;

    CREATE TABLE IF NOT EXISTS unclaimed_blocks (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id),
        block_number INTEGER NOT NULL,
        block_height BIGINT NOT NULL,
        tx_hash TEXT NOT NULL,
        reward BIGINT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL,
        claimed BOOLEAN NOT NULL DEFAULT FALSE,
        claimed_at TIMESTAMPTZ,
        forfeited_at TIMESTAMPTZ
    );
    CREATE INDEX IF NOT EXISTS idx_unclaimed_blocks_user
        ON unclaimed_blocks (user_id) WHERE claimed = FALSE;
    CREATE UNIQUE INDEX IF NOT EXISTS idx_unclaimed_blocks_block_user
        ON unclaimed_blocks (block_height, user_id);

    CREATE TABLE IF NOT EXISTS miner_activity (
        user_id TEXT PRIMARY KEY REFERENCES users(id),
        last_claim_time TIMESTAMPTZ,
        total_claims INTEGER NOT NULL DEFAULT 0,
        missed_claims INTEGER NOT NULL DEFAULT 0,
        is_active BOOLEAN NOT NULL DEFAULT FALSE,
        updated_at TIMESTAMPTZ
    );

    CREATE TABLE IF NOT EXISTS stakes (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id),
        locked_amount BIGINT NOT NULL,
        price_at_open NUMERIC(20, 2) NOT NULL,
        required_hash_power NUMERIC(30, 8) NOT NULL,
        apr_percent NUMERIC(6, 2) NOT NULL,
        lock_months INTEGER NOT NULL,
        daily_reward BIGINT NOT NULL,
        total_rewards_paid BIGINT NOT NULL DEFAULT 0,
        opened_at TIMESTAMPTZ NOT NULL,
        unlocks_at TIMESTAMPTZ NOT NULL,
        status TEXT NOT NULL DEFAULT 'active',
        last_reward_at TIMESTAMPTZ
    );

    CREATE TABLE IF NOT EXISTS staking_rewards (
        id TEXT PRIMARY KEY,
        stake_id TEXT NOT NULL REFERENCES stakes(id),
        user_id TEXT NOT NULL REFERENCES users(id),
        amount BIGINT NOT NULL,
        price_at_payment NUMERIC(20, 2) NOT NULL,
        paid_at TIMESTAMPTZ NOT NULL
    );
"""

SUPPLY_LOCK = "SELECT pg_advisory_xact_lock(hashtext('hashwave_supply_state'))"

GET_SETTING = "SELECT value FROM system_settings WHERE key = $1"

GET_SETTINGS = "SELECT key, value FROM system_settings WHERE key = ANY($1::text[])"

SET_SETTING = """
    INSERT INTO system_settings (key, value, updated_at)
    VALUES ($1, $2, NOW())
    ON CONFLICT (key) DO UPDATE
    SET value = EXCLUDED.value, updated_at = NOW()
"""

UPSERT_USER = """
    INSERT INTO users (id, username, hash_power, base_hash_power, mining_started_at)
    VALUES ($1, $2, $3, $4, $5)
    ON CONFLICT (id) DO UPDATE
    SET username = EXCLUDED.username,
        hash_power = EXCLUDED.hash_power,
        base_hash_power = EXCLUDED.base_hash_power,
        mining_started_at = EXCLUDED.mining_started_at
"""

SET_BALANCE = """
    INSERT INTO user_balances (user_id, asset, amount)
    VALUES ($1, $2, $3)
    ON CONFLICT (user_id, asset) DO UPDATE SET amount = EXCLUDED.amount
"""

GET_USER = """
    SELECT id, username, hash_power, base_hash_power, mining_started_at
    FROM users
    WHERE id = $1
"""

LIST_USERS = """
    SELECT id, username, hash_power, base_hash_power, mining_started_at
    FROM users
    ORDER BY id
"""

USER_BALANCES = "SELECT asset, amount FROM user_balances WHERE user_id = $1"

ALL_BALANCES = "SELECT user_id, asset, amount FROM user_balances"

START_MINING = """
    UPDATE users
    SET mining_started_at = COALESCE(mining_started_at, $2)
    WHERE id = $1
    RETURNING id
"""

CREDIT_BALANCE = """
    INSERT INTO user_balances (user_id, asset, amount)
    VALUES ($1, $2, $3)
    ON CONFLICT (user_id, asset) DO UPDATE
    SET amount = user_balances.amount + EXCLUDED.amount
    RETURNING amount
"""

DEBIT_BALANCE = """
    UPDATE user_balances
    SET amount = amount - $3
    WHERE user_id = $1 AND asset = $2 AND amount >= $3
    RETURNING amount
"""

TOTAL_BALANCE = "SELECT COALESCE(SUM(amount), 0) FROM user_balances WHERE asset = $1"

TOTAL_HASH_POWER = "SELECT COALESCE(SUM(hash_power), 0) FROM users"

BLOCK_COLUMNS = "height, block_number, reward, total_hash_power, period, produced_at, allocations, distributed"

INSERT_BLOCK = """
    INSERT INTO mining_blocks (
        height, block_number, reward, total_hash_power, period, produced_at, allocations, distributed
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, FALSE)
    ON CONFLICT DO NOTHING
"""

LATEST_BLOCK = f"""
    SELECT {BLOCK_COLUMNS}
    FROM mining_blocks
    ORDER BY height DESC
    LIMIT 1
"""

LIST_BLOCKS = f"""
    SELECT {BLOCK_COLUMNS}
    FROM mining_blocks
    ORDER BY height DESC
    LIMIT $1
"""

MARK_BLOCK_DISTRIBUTED = "UPDATE mining_blocks SET distributed = TRUE WHERE height = $1"

UNDISTRIBUTED_BLOCKS = f"""
    SELECT {BLOCK_COLUMNS}
    FROM mining_blocks
    WHERE distributed = FALSE
    ORDER BY height
"""

CLAIM_COLUMNS = """
    id, user_id, block_number, block_height, tx_hash, reward,
    created_at, expires_at, claimed, claimed_at, forfeited_at
"""

INSERT_CLAIM = """
    INSERT INTO unclaimed_blocks (
        id, user_id, block_number, block_height, tx_hash, reward, created_at, expires_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
    ON CONFLICT (block_height, user_id) DO NOTHING
    RETURNING id
"""

GET_CLAIM = f"SELECT {CLAIM_COLUMNS} FROM unclaimed_blocks WHERE id = $1"

PENDING_CLAIMS = f"""
    SELECT {CLAIM_COLUMNS}
    FROM unclaimed_blocks
    WHERE user_id = $1 AND claimed = FALSE AND expires_at >= $2
    ORDER BY created_at DESC
"""

# Check-and-set: only one concurrent caller sees the row returned
CLAIM_ONE = f"""
    UPDATE unclaimed_blocks
    SET claimed = TRUE, claimed_at = $3
    WHERE id = $1 AND user_id = $2 AND claimed = FALSE AND expires_at >= $3
    RETURNING {CLAIM_COLUMNS}
"""

CLAIM_ALL = f"""
    UPDATE unclaimed_blocks
    SET claimed = TRUE, claimed_at = $2
    WHERE user_id = $1 AND claimed = FALSE AND expires_at >= $2
    RETURNING {CLAIM_COLUMNS}
"""

FORFEIT_EXPIRED = f"""
    UPDATE unclaimed_blocks
    SET forfeited_at = $1
    WHERE claimed = FALSE AND forfeited_at IS NULL AND expires_at < $1
    RETURNING {CLAIM_COLUMNS}
"""

ACTIVITY_COLUMNS = "user_id, last_claim_time, total_claims, missed_claims, is_active, updated_at"

GET_ACTIVITY = f"SELECT {ACTIVITY_COLUMNS} FROM miner_activity WHERE user_id = $1"

GET_ACTIVITY_FOR_UPDATE = f"SELECT {ACTIVITY_COLUMNS} FROM miner_activity WHERE user_id = $1 FOR UPDATE"

ENSURE_ACTIVITY = """
    INSERT INTO miner_activity (user_id) VALUES ($1)
    ON CONFLICT (user_id) DO NOTHING
"""

SAVE_ACTIVITY = """
    UPDATE miner_activity
    SET last_claim_time = $2,
        total_claims = $3,
        missed_claims = $4,
        is_active = $5,
        updated_at = $6
    WHERE user_id = $1
"""

LIST_ACTIVITY = f"SELECT {ACTIVITY_COLUMNS} FROM miner_activity ORDER BY user_id"

STAKE_COLUMNS = """
    id, user_id, locked_amount, price_at_open, required_hash_power, apr_percent,
    lock_months, daily_reward, total_rewards_paid, opened_at, unlocks_at, status, last_reward_at
"""

INSERT_STAKE = """
    INSERT INTO stakes (
        id, user_id, locked_amount, price_at_open, required_hash_power, apr_percent,
        lock_months, daily_reward, total_rewards_paid, opened_at, unlocks_at, status, last_reward_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
"""

GET_STAKE = f"SELECT {STAKE_COLUMNS} FROM stakes WHERE id = $1"

USER_STAKES = f"SELECT {STAKE_COLUMNS} FROM stakes WHERE user_id = $1 ORDER BY opened_at DESC"

ACTIVE_STAKES = f"SELECT {STAKE_COLUMNS} FROM stakes WHERE status = 'active' ORDER BY opened_at"

# Per-stake, per-day idempotence: a stake already paid on $2 is not touched
PAY_STAKE = f"""
    UPDATE stakes
    SET total_rewards_paid = total_rewards_paid + daily_reward,
        last_reward_at = $3
    WHERE id = $1
      AND status = 'active'
      AND (last_reward_at IS NULL OR (last_reward_at AT TIME ZONE 'UTC')::date < $2)
    RETURNING {STAKE_COLUMNS}
"""

INSERT_STAKE_REWARD = """
    INSERT INTO staking_rewards (id, stake_id, user_id, amount, price_at_payment, paid_at)
    VALUES ($1, $2, $3, $4, $5, $6)
"""

MATURE_STAKE = f"""
    UPDATE stakes
    SET status = 'matured'
    WHERE id = $1 AND status = 'active' AND unlocks_at <= $2
    RETURNING {STAKE_COLUMNS}
"""

STAKE_REWARDS = """
    SELECT id, stake_id, user_id, amount, price_at_payment, paid_at
    FROM staking_rewards
    WHERE stake_id = $1
    ORDER BY paid_at
"""
