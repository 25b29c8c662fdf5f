"""User-friendly Agent API for portfolio rebalancing and trade recommendations.

This module provides a single high-level interface over the data, portfolio,
strategy, venue, execution and ledger layers. Every collaborator is injected
through the constructor; from_config() wires the production ones.
"""

from typing import Any, Dict, List, Mapping, Optional

from trade_agent.data.base import SOL_MINT, MarketOverview, TokenInfo
from trade_agent.data.market_data import MarketDataService
from trade_agent.data.portfolio_reader import RpcPortfolioReader
from trade_agent.data.providers.birdeye_provider import BirdeyeProvider
from trade_agent.execution.base import (
    ExecutionOptions,
    RebalanceResult,
    Signer,
    WalletLockRegistry,
)
from trade_agent.execution.coordinator import ExecutionCoordinator
from trade_agent.execution.signer import KeypairSigner
from trade_agent.ledger.base import AgentConfig, LedgerClient
from trade_agent.ledger.sqlite_ledger import SqliteLedger
from trade_agent.notifications.base import NotificationSink
from trade_agent.notifications.sinks import LoggingSink
from trade_agent.orchestration.session import RebalanceSession
from trade_agent.portfolio.allocation_analyzer import AllocationAnalyzer
from trade_agent.portfolio.base import AllocationDeviation, PortfolioSnapshot, RebalancePlan
from trade_agent.portfolio.rebalance_planner import RebalancePlanner
from trade_agent.strategy.signal_engine import SignalEngine
from trade_agent.strategy.base import TradeRecommendation
from trade_agent.utils.config import Config, Credentials, load_config, load_credentials
from trade_agent.utils.exceptions import ConfigurationError
from trade_agent.utils.logging import get_logger
from trade_agent.venue.base import SwapVenue
from trade_agent.venue.jupiter_venue import JupiterVenue
from trade_agent.venue.quote_resolver import QuoteResolver

logger = get_logger(__name__)


def token_registry(entries: Optional[List[Dict[str, Any]]]) -> Dict[str, TokenInfo]:
    """Build the mint → TokenInfo registry from the `market.tokens` config list."""
    registry = {}
    for entry in entries or []:
        try:
            info = TokenInfo(
                mint=entry["mint"],
                symbol=entry["symbol"],
                decimals=int(entry["decimals"]),
                tags=tuple(entry.get("tags") or ()),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid token registry entry {entry}: {e}") from e
        registry[info.mint] = info
    return registry


class TradeAgentAPI:
    """High-level API for the trading agent.

    Example:
        >>> api = TradeAgentAPI.from_config()
        >>> plan = await api.plan(wallet)
        >>> for action in plan:
        ...     print(action.describe(), action.status.value)
        >>> result = await api.rebalance(wallet)
        >>> print(result.summary())
        >>> await api.close()
    """

    def __init__(
        self,
        venue: SwapVenue,
        market_data: MarketDataService,
        portfolio_reader: RpcPortfolioReader,
        ledger: LedgerClient,
        notifier: Optional[NotificationSink] = None,
        signer: Optional[Signer] = None,
        tokens: Optional[Mapping[str, TokenInfo]] = None,
        watchlist: Optional[List[str]] = None,
        agents: Optional[Dict[str, Dict[str, Any]]] = None,
        quotes: Optional[Dict[str, Any]] = None,
        execution: Optional[Dict[str, Any]] = None,
        strategy_defaults: Optional[Dict[str, Dict]] = None,
        native_mint: str = SOL_MINT,
    ):
        """Initialize TradeAgentAPI.

        Args:
            venue: Swap venue
            market_data: Cached market data service
            portfolio_reader: Builds wallet snapshots
            ledger: Agent config, snapshot and trade storage
            notifier: Notification sink (defaults to LoggingSink)
            signer: Signer used by rebalance/execute when none is passed
            tokens: Token registry by mint
            watchlist: Mints the strategies consider beyond holdings
            agents: Agent configs by wallet from the `agents` config section;
                used when the ledger holds none
            quotes: The `quotes` config section
            execution: The `execution` config section
            strategy_defaults: The `strategies` config section
            native_mint: Chain gas asset
        """
        quotes = quotes or {}
        self.venue = venue
        self.market_data = market_data
        self.portfolio_reader = portfolio_reader
        self.ledger = ledger
        self.notifier = notifier or LoggingSink()
        self.signer = signer
        self.tokens = dict(tokens or {})
        self.agents = dict(agents or {})
        self.execution_config = dict(execution or {})

        stable_mints = market_data.stable_mints
        self.analyzer = AllocationAnalyzer()
        self.planner = RebalancePlanner(stable_mints=stable_mints, native_mint=native_mint)
        self.resolver = QuoteResolver(
            venue,
            slippage_bps=quotes.get("slippage_bps", 50),
            max_retries=quotes.get("max_retries", 1),
            concurrency=quotes.get("concurrency", 4),
            timeout=quotes.get("timeout", 10.0),
        )
        self.coordinator = ExecutionCoordinator(
            venue,
            ledger,
            self.notifier,
            locks=WalletLockRegistry(),
            options=ExecutionOptions.from_config(
                self.execution_config, quotes.get("slippage_bps", 50)
            ),
        )
        self.engine = SignalEngine(
            market_data,
            self.resolver,
            watchlist=watchlist or [],
            native_mint=native_mint,
            strategy_defaults=strategy_defaults,
        )

        logger.debug("TradeAgentAPI initialized with %s", type(venue).__name__)

    @classmethod
    def from_config(
        cls,
        config: Optional[Config] = None,
        credentials: Optional[Credentials] = None,
    ) -> "TradeAgentAPI":
        """Wire the production stack: Jupiter, Birdeye, Solana RPC and SQLite.

        Raises:
            ConfigurationError: On invalid configuration or missing keys
        """
        config = config or load_config()
        credentials = credentials or load_credentials()

        tokens = token_registry(config.get("market.tokens"))
        venue = JupiterVenue.from_config(
            config.section("venue"), credentials.rpc_url, credentials.jupiter_api_key
        )
        provider = BirdeyeProvider(
            api_key=credentials.birdeye_api_key,
            base_url=config.get("market.birdeye_base_url", "https://public-api.birdeye.so"),
            timeout=config.get("market.timeout", 15.0),
        )
        market_data = MarketDataService(
            provider,
            tokens=tokens,
            stable_mints=config.get("market.stablecoins") or [],
            benchmark_mint=config.get("market.benchmark_mint", SOL_MINT),
            trend_threshold=config.get("market.trend_threshold", 3.0),
            beta_table=config.get("market.beta_table") or {},
            concurrency=config.get("market.concurrency", 4),
            history_ttl=config.get("market.cache.price_history_ttl", 300),
            indicator_ttl=config.get("market.cache.indicators_ttl", 900),
            overview_ttl=config.get("market.cache.market_overview_ttl", 300),
        )
        reader = RpcPortfolioReader(credentials.rpc_url, venue.get_prices, tokens)
        ledger = SqliteLedger(config.get("ledger.db_path", "data/trade_agent.db"))
        signer = (
            KeypairSigner.from_file(credentials.keypair_path)
            if credentials.keypair_path
            else None
        )

        return cls(
            venue=venue,
            market_data=market_data,
            portfolio_reader=reader,
            ledger=ledger,
            signer=signer,
            tokens=tokens,
            watchlist=config.get("market.watchlist") or [],
            agents=config.get("agents") or {},
            quotes=config.section("quotes"),
            execution=config.section("execution"),
            strategy_defaults=config.get("strategies") or {},
            native_mint=config.get("market.native_mint", SOL_MINT),
        )

    async def __aenter__(self) -> "TradeAgentAPI":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Release HTTP clients and database connections."""
        await self.market_data.drain()
        await self.venue.close()
        await self.market_data.provider.close()
        await self.portfolio_reader.close()
        await self.ledger.close()

    async def get_agent_config(self, wallet: str) -> AgentConfig:
        """Agent config from the ledger, falling back to the `agents` section.

        A config taken from the YAML file is saved to the ledger so later
        reads see the same values.

        Raises:
            ConfigurationError: If the wallet has no agent config
        """
        config = await self.ledger.get_agent_config(wallet)
        if config is not None:
            return config

        if wallet not in self.agents:
            raise ConfigurationError(f"No agent configuration for wallet {wallet}")
        config = AgentConfig.from_dict(wallet, self.agents[wallet])
        await self.ledger.save_agent_config(config)
        return config

    async def snapshot(self, wallet: str) -> PortfolioSnapshot:
        """Read the wallet's current holdings and store the snapshot."""
        snapshot = await self.portfolio_reader.read(wallet)
        try:
            await self.ledger.save_portfolio(snapshot)
        except Exception as e:
            logger.warning("Failed to store snapshot for %s: %s", wallet, e)
        return snapshot

    async def analyze(self, wallet: str) -> List[AllocationDeviation]:
        """Current vs target allocation for every held or targeted asset."""
        snapshot = await self.snapshot(wallet)
        config = await self.get_agent_config(wallet)
        return self.analyzer.analyze(snapshot, config.target_allocations)

    async def needs_rebalancing(self, wallet: str) -> bool:
        """True when auto-rebalance is on and any deviation exceeds its tolerance."""
        config = await self.get_agent_config(wallet)
        if not config.auto_rebalance:
            return False
        deviations = await self.analyze(wallet)
        return self.analyzer.needs_rebalancing(deviations, config.rebalance_threshold)

    def hold_wallet(self, wallet: str, try_acquire: bool = False):
        """Hold the wallet's session lock from snapshot read through execution.

        Raises:
            SessionBusyError: If try_acquire is set and the wallet is busy
        """
        return self.coordinator.locks.hold(wallet, try_acquire=try_acquire)

    def new_session(self) -> RebalanceSession:
        return RebalanceSession(
            self.analyzer,
            self.planner,
            self.resolver,
            self.coordinator,
            tokens=self.tokens,
        )

    async def plan(self, wallet: str) -> RebalancePlan:
        """Quoted rebalance plan for the wallet, without executing it (dry run)."""
        snapshot = await self.snapshot(wallet)
        config = await self.get_agent_config(wallet)
        return await self.new_session().prepare(snapshot, config)

    async def rebalance(
        self,
        wallet: str,
        signer: Optional[Signer] = None,
        session: Optional[RebalanceSession] = None,
    ) -> RebalanceResult:
        """Run a full rebalance session for the wallet.

        The wallet lock is taken before the snapshot is read, so a second
        call for a busy wallet plans from the holdings the first one left.

        Args:
            wallet: Wallet to rebalance
            signer: Overrides the configured signer
            session: Pre-built session, so callers can cancel() it

        Raises:
            ConfigurationError: If no signer is available
            ValidationError: If the snapshot or config is malformed
            NoIntermediaryAssetError: If no routing asset is held
            SessionBusyError: If the session has try_acquire set and the
                wallet is busy
        """
        signer = self.require_signer(signer)
        session = session or self.new_session()
        async with self.hold_wallet(wallet, try_acquire=session.options.try_acquire):
            snapshot = await self.snapshot(wallet)
            config = await self.get_agent_config(wallet)
            return await session.run(snapshot, config, signer, lock_held=True)

    async def auto_rebalance(self, wallet: str) -> Optional[RebalanceResult]:
        """Scheduler cycle: check → plan → execute.

        Returns:
            The session result, or None when the wallet needs no rebalance
            or has auto-rebalance off
        """
        config = await self.get_agent_config(wallet)
        if not config.auto_rebalance:
            return None

        session = self.new_session()
        async with self.hold_wallet(wallet, try_acquire=session.options.try_acquire):
            snapshot = await self.snapshot(wallet)
            deviations = self.analyzer.analyze(snapshot, config.target_allocations)
            if not self.analyzer.needs_rebalancing(deviations, config.rebalance_threshold):
                logger.debug("Wallet %s is within thresholds", wallet)
                return None
            return await session.run(snapshot, config, self.require_signer(), lock_held=True)

    async def recommend(self, wallet: str) -> List[TradeRecommendation]:
        """Ranked, quoted strategy recommendations for the wallet."""
        snapshot = await self.snapshot(wallet)
        config = await self.get_agent_config(wallet)
        return await self.engine.recommend(snapshot, config)

    async def execute_recommendation(
        self,
        wallet: str,
        recommendation: TradeRecommendation,
        signer: Optional[Signer] = None,
    ) -> RebalanceResult:
        """Execute one accepted recommendation through the coordinator."""
        signer = self.require_signer(signer)
        config = await self.get_agent_config(wallet)
        options = ExecutionOptions.from_config(self.execution_config, config.max_slippage_bps)
        return await self.coordinator.execute_recommendation(
            wallet, recommendation, signer, options
        )

    async def market_overview(self) -> MarketOverview:
        return await self.market_data.market_overview(self.engine.watchlist)

    async def status(self, wallet: str, trade_limit: int = 10) -> Dict[str, Any]:
        """Config, last stored snapshot and recent trades for the wallet."""
        config = await self.get_agent_config(wallet)
        snapshot = await self.ledger.get_portfolio(wallet)
        trades = await self.ledger.list_trades(wallet, limit=trade_limit)
        return {
            "wallet": wallet,
            "config": config,
            "snapshot": snapshot,
            "total_value": snapshot.total_value if snapshot else None,
            "trades": trades,
            "busy": self.coordinator.locks.is_locked(wallet),
        }

    def require_signer(self, signer: Optional[Signer] = None) -> Signer:
        signer = signer or self.signer
        if signer is None:
            raise ConfigurationError(
                "No signer configured; set WALLET_KEYPAIR_PATH or pass a signer"
            )
        return signer
