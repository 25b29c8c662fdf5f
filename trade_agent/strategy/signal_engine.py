"""Signal engine: strategy fan-out, quoting and confidence ranking.

One analysis cycle:
1. Gather the StrategyContext (market overview, metrics, indicators,
   betas, stablecoin set) concurrently from the market data service
2. Run every active strategy to get unquoted drafts
3. Quote drafts concurrently; drafts without a route are dropped
4. Score each quoted draft and sort by confidence, highest first
"""

import asyncio
from typing import Dict, List, Mapping, Optional, Sequence, Type

from trade_agent.data.base import SOL_MINT
from trade_agent.data.market_data import MarketDataService
from trade_agent.ledger.base import AgentConfig, StrategyConfig
from trade_agent.portfolio.base import PortfolioSnapshot
from trade_agent.strategy.base import SignalStrategy, StrategyContext, StrategyType, TradeRecommendation
from trade_agent.strategy.confidence import ConfidenceScorer
from trade_agent.strategy.dca import DCAStrategy
from trade_agent.strategy.mean_reversion import MeanReversionStrategy
from trade_agent.strategy.momentum import MomentumStrategy
from trade_agent.strategy.trend_following import TrendFollowingStrategy
from trade_agent.utils.logging import get_logger
from trade_agent.venue.base import QuoteOk
from trade_agent.venue.quote_resolver import QuoteResolver

logger = get_logger(__name__)

STRATEGY_CLASSES: Dict[StrategyType, Type[SignalStrategy]] = {
    StrategyType.DCA: DCAStrategy,
    StrategyType.MOMENTUM: MomentumStrategy,
    StrategyType.MEAN_REVERSION: MeanReversionStrategy,
    StrategyType.TREND_FOLLOWING: TrendFollowingStrategy,
}


def build_strategies(
    configs: Sequence[StrategyConfig],
    defaults: Optional[Mapping[str, Dict]] = None,
) -> List[SignalStrategy]:
    """Instantiate active strategies.

    Args:
        configs: Configured strategies; inactive ones are skipped
        defaults: Parameter overrides by strategy type value (the
            `strategies` config section); per-strategy params win
    """
    defaults = defaults or {}
    strategies = []
    for config in configs:
        if not config.is_active:
            continue
        params = {**defaults.get(config.type.value, {}), **config.params}
        strategies.append(STRATEGY_CLASSES[config.type](config.id, config.name, params))
    return strategies


class SignalEngine:
    """Produces ranked trade recommendations for a wallet.

    Args:
        market_data: Cached market data service
        resolver: Quote resolver for recommendation drafts
        scorer: Confidence scorer
        watchlist: Mints considered beyond the wallet's holdings
        native_mint: Gas-reserve asset kept by trend following
        strategy_defaults: Parameter overrides by strategy type value

    Example:
        >>> engine = SignalEngine(market_data, resolver, watchlist=watchlist)
        >>> recommendations = await engine.recommend(snapshot, agent_config)
        >>> recommendations[0].confidence
        78
    """

    def __init__(
        self,
        market_data: MarketDataService,
        resolver: QuoteResolver,
        scorer: Optional[ConfidenceScorer] = None,
        watchlist: Sequence[str] = (),
        native_mint: str = SOL_MINT,
        strategy_defaults: Optional[Mapping[str, Dict]] = None,
    ):
        self.market_data = market_data
        self.resolver = resolver
        self.scorer = scorer or ConfidenceScorer()
        self.watchlist = list(watchlist)
        self.native_mint = native_mint
        self.strategy_defaults = dict(strategy_defaults or {})

    async def build_context(self, snapshot: PortfolioSnapshot, config: AgentConfig) -> StrategyContext:
        """Fetch everything strategies need, concurrently."""
        candidates = list(
            dict.fromkeys([*self.watchlist, *snapshot.mints, *config.preferred_tokens])
        )
        stable_mints = await self.market_data.stable_set(candidates)
        volatile = [m for m in candidates if m not in stable_mints]

        market, metrics, indicators, betas, tokens = await asyncio.gather(
            self.market_data.market_overview(self.watchlist),
            self.market_data.metrics_for(volatile),
            self.market_data.indicators_for(volatile),
            self.market_data.betas_for(volatile),
            self.market_data.tokens_for(candidates),
        )

        return StrategyContext(
            snapshot=snapshot,
            market=market,
            metrics=metrics,
            indicators=indicators,
            betas=betas,
            tokens=tokens,
            stable_mints=frozenset(stable_mints),
            preferred_tokens=tuple(config.preferred_tokens),
            excluded_tokens=frozenset(config.excluded_tokens),
            max_amount_per_trade=config.max_amount_per_trade,
            native_mint=self.native_mint,
        )

    async def recommend(
        self,
        snapshot: PortfolioSnapshot,
        config: AgentConfig,
        strategies: Optional[Sequence[SignalStrategy]] = None,
    ) -> List[TradeRecommendation]:
        """Ranked, quoted recommendations for this cycle."""
        if strategies is None:
            strategies = build_strategies(config.strategies, self.strategy_defaults)
        if not strategies:
            logger.info("No active strategies for %s", snapshot.wallet)
            return []

        context = await self.build_context(snapshot, config)

        drafts: List[TradeRecommendation] = []
        for strategy in strategies:
            produced = strategy.generate(context)
            logger.debug("Strategy %s produced %d drafts", strategy.name, len(produced))
            drafts.extend(produced)

        quoted = await self._quote_drafts(drafts, config.max_slippage_bps)
        scored = [
            self.scorer.apply(
                draft,
                context.trend,
                context.indicators.get(draft.output_mint),
                config.risk_profile,
            )
            for draft in quoted
        ]
        scored.sort(key=lambda r: (r.confidence, r.base_confidence), reverse=True)

        logger.info(
            "Generated %d recommendations for %s (%d drafts, trend %s)",
            len(scored),
            snapshot.wallet,
            len(drafts),
            context.trend.value,
        )
        return scored

    async def _quote_drafts(
        self, drafts: Sequence[TradeRecommendation], slippage_bps: int
    ) -> List[TradeRecommendation]:
        semaphore = asyncio.Semaphore(self.resolver.concurrency)

        async def quote(draft: TradeRecommendation) -> Optional[TradeRecommendation]:
            async with semaphore:
                result = await self.resolver.quote(
                    draft.input_mint,
                    draft.output_mint,
                    draft.input_amount,
                    draft.input_decimals,
                    slippage_bps=slippage_bps,
                )
            if isinstance(result, QuoteOk):
                return draft.with_quote(result.quote)
            logger.warning("Dropping %s (%s): %s", draft.describe(), draft.strategy_name, result.reason)
            return None

        results = await asyncio.gather(*(quote(d) for d in drafts))
        return [r for r in results if r is not None]
