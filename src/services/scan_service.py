# coding: utf-8
"""
Scan Service

Один scan cycle:
    pause check → shadow resolve → indicators → AI proposals → consensus
    → validation → TV confirmation → cooldown → correlation → open trade
    → notify → shadow signals

Сбой коллектора (market data / модель / store) пропускает символ или
сигнал, но не весь цикл.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Dict, List, Optional

from loguru import logger

from config.config import SCAN_CANDLE_LIMIT, SCAN_DEADLINE_SEC, SCAN_INTERVAL, SCAN_SYMBOLS
from config.trading_config import TradingConfig, get_trading_config
from src.cache.base import DocumentStore
from src.core.exceptions import EngineError
from src.learning.optimization_config import OptimizationConfig, load_optimization_config
from src.services.ai_proposals import ProposalSource, build_prompt
from src.services.consensus.cooldown import CooldownGate
from src.services.consensus.matcher import ConsensusMatcher, normalize_proposal
from src.services.consensus.models import ConsensusSignal, RawProposal
from src.services.consensus.tv_confirmation import TVConfirmationService
from src.services.consensus.validation import SignalValidator
from src.services.market_data import MarketDataSource, gather_with_deadline
from src.services.notifier import Notifier, format_signal
from src.services.portfolio.manager import PortfolioManager
from src.services.portfolio.shadow import ShadowTracker
from src.services.technical_indicators import IndicatorSnapshot, technical_indicators


@dataclass
class ScanResult:
    started_at: datetime
    paused: bool = False
    symbols_scanned: int = 0
    models_responded: List[str] = field(default_factory=list)
    candidates: int = 0
    emitted: List[ConsensusSignal] = field(default_factory=list)
    opened: List[str] = field(default_factory=list)
    rejected: Dict[str, str] = field(default_factory=dict)
    shadow: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "paused": self.paused,
            "symbols_scanned": self.symbols_scanned,
            "models_responded": self.models_responded,
            "candidates": self.candidates,
            "emitted": [s.model_dump(mode="json") for s in self.emitted],
            "opened": self.opened,
            "rejected": self.rejected,
            "rejected_by_reason": dict(Counter(self.rejected.values())),
            "shadow": self.shadow,
        }


class ScanService:
    """Оркестратор scan cycle. Все коллекторы передаются явно."""

    def __init__(
        self,
        store: DocumentStore,
        market_data: MarketDataSource,
        ai: ProposalSource,
        notifier: Notifier,
        config: Optional[TradingConfig] = None,
        symbols: Optional[List[str]] = None,
        deadline_sec: float = SCAN_DEADLINE_SEC,
    ):
        self.store = store
        self.market_data = market_data
        self.ai = ai
        self.notifier = notifier
        self.config = config or get_trading_config()
        self.symbols = [s.upper() for s in (symbols or SCAN_SYMBOLS)]
        self.deadline_sec = deadline_sec

        self.validator = SignalValidator(self.config.scan)
        self.tv = TVConfirmationService(store, self.config.tv)
        self.shadow = ShadowTracker(store, self.config.shadow)
        self.portfolio = PortfolioManager(store, self.config)

    async def _indicators(self, symbol: str) -> Optional[IndicatorSnapshot]:
        candles = await self.market_data.get_candles(symbol, SCAN_INTERVAL, SCAN_CANDLE_LIMIT)
        if candles is None:
            return None
        return technical_indicators.calculate(symbol, candles)

    async def run_cycle(self, now: Optional[datetime] = None) -> ScanResult:
        now = now or datetime.now(UTC)
        result = ScanResult(started_at=now)
        opt = await load_optimization_config(self.store)

        if opt.is_paused(now):
            logger.warning(f"⏸️ Trading paused until {opt.paused_until}: {opt.pause_reason}")
            result.paused = True
            return result

        prices = await self.market_data.get_prices(self.symbols)
        try:
            evaluation = await self.shadow.evaluate(prices, now)
            result.shadow = evaluation.summary()
        except EngineError as e:
            logger.error(f"Shadow evaluation skipped: {e}")

        snapshots = await gather_with_deadline(self.symbols, self._indicators, self.deadline_sec)
        result.symbols_scanned = len(snapshots)
        if not snapshots:
            logger.warning("No indicator data for any symbol, scan cycle ends")
            return result

        ordered = [snapshots[s] for s in self.symbols if s in snapshots]
        responses = await self.ai.propose(build_prompt(ordered, opt.min_risk_reward))
        result.models_responded = [m for m, r in responses.items() if r is not None]

        matcher = ConsensusMatcher(self.config.tolerance, opt.ai_weights)
        candidates = [s for s in matcher.match(responses) if s.symbol in snapshots]
        result.candidates = len(candidates)
        logger.info(
            f"🔍 Scan: {len(snapshots)} symbols, {len(result.models_responded)} models, "
            f"{len(candidates)} consensus candidates"
        )

        used_groups: Counter = Counter()
        for candidate in sorted(candidates, key=lambda s: s.confidence, reverse=True):
            snapshot = snapshots[candidate.symbol]
            signal = candidate.model_copy(update={"regime": snapshot.regime.value})
            try:
                reason = await self._process(signal, snapshot, opt, used_groups, now, result)
            except EngineError as e:
                logger.error(f"{signal.symbol}: processing failed: {e}")
                reason = "store_error"
            if reason:
                result.rejected[signal.symbol] = reason

        try:
            await self._store_shadow(responses, now)
        except EngineError as e:
            logger.error(f"Shadow signals not stored: {e}")

        logger.info(
            f"✅ Scan done: {len(result.emitted)} emitted, {len(result.opened)} opened, "
            f"{len(result.rejected)} rejected"
        )
        return result

    async def _process(
        self,
        signal: ConsensusSignal,
        snapshot: IndicatorSnapshot,
        opt: OptimizationConfig,
        used_groups: Counter,
        now: datetime,
        result: ScanResult,
    ) -> Optional[str]:
        """Прогнать одного кандидата через gates. Returns: причина отказа или None."""
        await self.shadow.record_consensus(signal.tier, now)

        reason = self.validator.validate(signal, snapshot, opt, now)
        if reason:
            return reason

        confirmation = await self.tv.confirm(signal, now)
        if not confirmation.accepted:
            return confirmation.reason
        signal = confirmation.signal

        group = self.config.correlation_group(signal.symbol)
        if used_groups[group] >= self.config.scan.max_signals_per_group:
            return "correlation_conflict"

        gate = CooldownGate(self.store, opt.cooldown_hours, self.config.scan.cooldown_override_pct)
        decision = await gate.check_and_record(signal.symbol, signal.direction, signal.entry, now)
        if not decision.allowed:
            return decision.reason

        used_groups[group] += 1
        result.emitted.append(signal)

        trade = await self.portfolio.open_from_signal(signal, now, regime=signal.regime)
        if trade is not None:
            result.opened.append(trade.id)
        await self.notifier.notify(format_signal(signal, trade))
        return None

    async def _store_shadow(self, responses, now: datetime) -> None:
        proposals: List[RawProposal] = []
        for source, raw_list in responses.items():
            for raw in raw_list or []:
                proposal = normalize_proposal(raw, source)
                if proposal is not None:
                    proposals.append(proposal)
        if proposals:
            await self.shadow.add(proposals, now=now)
