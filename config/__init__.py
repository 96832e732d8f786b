"""
Configuration module for the auto-voter.
Loads environment variables and exposes them on the Config class.
"""

import os
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from dotenv import load_dotenv

from .settings import (
    DATABASE_PATH,
    DISTRIBUTOR_ADDRESS,
    MINTER_ADDRESS,
    RPC_URL,
    VE_ADDRESS,
    VOTER_ADDRESS,
    VOTE_LEAD_TIME,
    WEEK,
)

load_dotenv()


def _parse_ids(raw: str) -> List[int]:
    ids = []
    for part in (raw or "").split(","):
        part = part.strip()
        if part:
            ids.append(int(part))
    return ids


class Config:
    """Application configuration."""

    # RPC Configuration
    RPC_URL: str = RPC_URL
    RPC_TIMEOUT: int = int(os.getenv("RPC_TIMEOUT", "30") or "30")

    # Contract Addresses
    VOTER_ADDRESS: str = VOTER_ADDRESS
    MINTER_ADDRESS: str = MINTER_ADDRESS
    VE_ADDRESS: str = VE_ADDRESS
    DISTRIBUTOR_ADDRESS: str = DISTRIBUTOR_ADDRESS

    # Signer and accounts (veNFT token ids)
    PRIVATE_KEY_SOURCE: str = os.getenv("PRIVATE_KEY_SOURCE", "")
    TOKEN_IDS: List[int] = _parse_ids(os.getenv("TOKEN_IDS", ""))

    # Strategy
    AUTOVOTE_ENABLED: bool = os.getenv("AUTOVOTE_ENABLED", "false").lower() in ("1", "true", "yes")
    VOTE_STRATEGY: str = os.getenv("VOTE_STRATEGY", "optimized")
    DIVERSIFICATION_POOLS: int = int(os.getenv("DIVERSIFICATION_POOLS", "3") or "3")
    VOTE_PERCENTAGE: str = os.getenv("VOTE_PERCENTAGE", "100")
    SCAN_MODE: str = os.getenv("SCAN_MODE", "scheduled")
    VOTE_LEAD_TIME: int = VOTE_LEAD_TIME

    # Loop pacing
    FETCH_INTERVAL: int = int(os.getenv("FETCH_INTERVAL", "900") or "900")
    COMPOUND_INTERVAL_HOURS: float = float(os.getenv("COMPOUND_INTERVAL_HOURS", "0") or "0")

    # API Keys
    COINGECKO_API_KEY: Optional[str] = os.getenv("COINGECKO_API_KEY")

    # Database
    DATABASE_PATH: str = DATABASE_PATH

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", "autovoter.log")

    # Cache Settings
    PRICE_CACHE_TTL: int = int(os.getenv("PRICE_CACHE_TTL", "300") or "300")

    DRY_RUN: bool = os.getenv("DRY_RUN", "false").lower() in ("1", "true", "yes")

    EPOCH_DURATION: int = WEEK

    @classmethod
    def validate(cls) -> List[str]:
        """
        Validate configuration and return list of errors.

        Returns:
            List of error messages, empty if valid
        """
        errors = []

        if not cls.RPC_URL:
            errors.append("RPC_URL not set in .env")

        if not cls.VOTER_ADDRESS:
            errors.append("VOTER_ADDRESS not set in .env")

        if not cls.TOKEN_IDS:
            errors.append("TOKEN_IDS not set in .env (comma separated veNFT ids)")

        if not cls.PRIVATE_KEY_SOURCE and not cls.DRY_RUN:
            errors.append("PRIVATE_KEY_SOURCE not set in .env")

        try:
            percentage = Decimal(cls.VOTE_PERCENTAGE)
            if percentage <= 0 or percentage > 100:
                errors.append("VOTE_PERCENTAGE must be in (0, 100]")
        except InvalidOperation:
            errors.append(f"VOTE_PERCENTAGE is not a number: {cls.VOTE_PERCENTAGE}")

        if cls.VOTE_STRATEGY not in ("single", "diversified", "optimized"):
            errors.append(f"Unknown VOTE_STRATEGY: {cls.VOTE_STRATEGY}")

        if cls.SCAN_MODE not in ("scheduled", "immediate"):
            errors.append(f"Unknown SCAN_MODE: {cls.SCAN_MODE}")

        return errors

    @classmethod
    def strategy(cls):
        """Build the initial StrategyConfig from the environment."""
        from autovoter.models import RefreshMode, StrategyConfig, StrategyKind

        return StrategyConfig(
            enabled=cls.AUTOVOTE_ENABLED,
            kind=StrategyKind(cls.VOTE_STRATEGY),
            diversification_count=cls.DIVERSIFICATION_POOLS,
            percentage=Decimal(cls.VOTE_PERCENTAGE),
            refresh_mode=RefreshMode(cls.SCAN_MODE),
        )


__all__ = ["Config"]
