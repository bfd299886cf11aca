"""
Gatekeeper — NFT-Gated Role Verification for Discord
======================================================
Verifies that a member's Solana wallet holds specific NFTs, then keeps the
member's guild roles in step with what the wallet currently owns.

Package layout::

    gatekeeper/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Status names, defaults, challenge template
    ├── errors.py          # GatekeeperError taxonomy (code + HTTP status)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # Sessions, rules, verification state, history
    ├── engine/
    │   ├── assets.py      # ReconciledAsset + attribute normalization
    │   └── rules.py       # Pure rule evaluation (tiers + traits)
    ├── sources/
    │   ├── base.py        # AssetSource protocol, SourceItem, SourcePage
    │   ├── rate_limit.py  # Per-provider throttle, retry, response cache
    │   ├── helius.py      # Helius DAS getAssetsByOwner
    │   └── magic_eden.py  # Magic Eden wallet tokens
    ├── services/
    │   ├── discovery.py        # Concurrent multi-source discovery + merge
    │   ├── ownership.py        # discover → evaluate pipeline
    │   ├── signature.py        # Solana address + ed25519 signature checks
    │   ├── session_service.py  # Verification session lifecycle
    │   ├── state_service.py    # Verification state, history, candidates
    │   ├── rule_store.py       # Guild rule CRUD
    │   ├── role_sync.py        # Grant/revoke diff applied to Discord
    │   ├── scheduler.py        # Periodic re-verification cycles
    │   └── embeds.py           # Discord embed builders
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader
    │   └── cogs/          # /verify, admin rule commands, scheduler loop
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Verification portal endpoints
"""

__version__ = "0.1.0"
