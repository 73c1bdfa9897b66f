"""
Consensus Matcher

Группирует proposals разных моделей и находит кластеры согласия.

Алгоритм:
1. normalize: каждый сырой proposal → RawProposal (невалидные отбрасываются с логом)
2. group by (symbol, direction); от одной модели остаётся proposal с max confidence
3. ребро между proposals разных моделей, если entry/SL/TP в пределах tolerance
   и entry trigger совпадает (когда задан у обоих)
4. компоненты связности отдельно для каждого trigger (proposals с этим trigger
   или без trigger), так что в кластере нет двух разных trigger; берём
   компоненту с наибольшим числом моделей (≥2)
5. уровни = среднее, confidence = взвешенное среднее по весам моделей
"""
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from loguru import logger
from pydantic import ValidationError

from config.trading_config import ConsensusTolerance
from src.core.enums import Direction, Tier
from src.services.consensus.models import (
    ConsensusSignal,
    RawProposal,
    is_within_percent,
)


ProposalInput = Union[RawProposal, Mapping[str, Any]]


def normalize_proposal(raw: ProposalInput, source: Optional[str] = None) -> Optional[RawProposal]:
    """
    Привести сырой proposal к RawProposal.

    Args:
        raw: dict от модели или готовый RawProposal
        source: id модели (перекрывает поле source в dict)

    Returns:
        RawProposal или None если форма невалидна
    """
    if isinstance(raw, RawProposal):
        if source and raw.source != source:
            return raw.model_copy(update={"source": source})
        return raw
    if not isinstance(raw, Mapping):
        logger.warning(f"Dropping non-object proposal from {source}: {raw!r}")
        return None

    data = dict(raw)
    if source:
        data["source"] = source
    try:
        return RawProposal.model_validate(data)
    except ValidationError as e:
        logger.warning(
            f"Dropping invalid proposal from {data.get('source')} "
            f"for {data.get('symbol')}: {e.error_count()} errors ({e.errors()[0]['msg']})"
        )
        return None


class ConsensusMatcher:
    """Stateless matcher: proposals → ConsensusSignal list."""

    def __init__(
        self,
        tolerance: Optional[ConsensusTolerance] = None,
        model_weights: Optional[Mapping[str, float]] = None,
    ):
        self.tolerance = tolerance or ConsensusTolerance()
        self.model_weights = dict(model_weights or {})

    def agree(self, a: RawProposal, b: RawProposal) -> bool:
        """Два proposal согласны (разные модели, уровни в пределах tolerance)."""
        if a.source == b.source:
            return False
        if a.symbol != b.symbol or a.direction is not b.direction:
            return False
        tol = self.tolerance
        if not is_within_percent(a.entry, b.entry, tol.entry_pct):
            return False
        if not is_within_percent(a.stop_loss, b.stop_loss, tol.stop_loss_pct):
            return False
        if not is_within_percent(a.take_profit, b.take_profit, tol.take_profit_pct):
            return False
        if a.entry_trigger and b.entry_trigger and a.entry_trigger != b.entry_trigger:
            return False
        return True

    def match(
        self, proposals_by_source: Mapping[str, Iterable[ProposalInput]]
    ) -> List[ConsensusSignal]:
        """
        Найти consensus сигналы за один scan cycle.

        Args:
            proposals_by_source: {model_id: [proposal, ...]}; None-списки
                (модель не ответила) пропускаются

        Returns:
            Не более одного сигнала на symbol
        """
        groups: Dict[Tuple[str, Direction], Dict[str, RawProposal]] = defaultdict(dict)

        for source, proposals in proposals_by_source.items():
            if not proposals:
                continue
            for raw in proposals:
                proposal = normalize_proposal(raw, source)
                if proposal is None:
                    continue
                bucket = groups[(proposal.symbol, proposal.direction)]
                current = bucket.get(proposal.source)
                if current is None or proposal.confidence > current.confidence:
                    bucket[proposal.source] = proposal

        by_symbol: Dict[str, List[ConsensusSignal]] = defaultdict(list)
        for (symbol, _direction), bucket in groups.items():
            signal = self._match_group(list(bucket.values()))
            if signal is not None:
                by_symbol[symbol].append(signal)

        signals = []
        for symbol, candidates in by_symbol.items():
            if len(candidates) > 1:
                logger.info(f"{symbol}: conflicting LONG/SHORT consensus, skipping")
                continue
            signals.append(candidates[0])
        return signals

    def _match_group(self, proposals: Sequence[RawProposal]) -> Optional[ConsensusSignal]:
        if len(proposals) < self.tolerance.min_sources:
            return None

        components = self._components(proposals)
        best = max(
            components,
            key=lambda c: (len(c), sum(p.confidence for p in c) / len(c)),
        )
        if len(best) < self.tolerance.min_sources:
            return None
        return self._build_signal(best)

    def _components(self, proposals: Sequence[RawProposal]) -> List[List[RawProposal]]:
        triggers = sorted({p.entry_trigger for p in proposals if p.entry_trigger}) or [None]
        components = []
        for trigger in triggers:
            members = [p for p in proposals if p.entry_trigger in (None, trigger)]
            components.extend(self._connected(members))
        return components

    def _connected(self, proposals: Sequence[RawProposal]) -> List[List[RawProposal]]:
        n = len(proposals)
        adjacency = {i: set() for i in range(n)}
        for i in range(n):
            for j in range(i + 1, n):
                if self.agree(proposals[i], proposals[j]):
                    adjacency[i].add(j)
                    adjacency[j].add(i)

        seen = set()
        components = []
        for start in range(n):
            if start in seen:
                continue
            stack = [start]
            component = []
            seen.add(start)
            while stack:
                node = stack.pop()
                component.append(proposals[node])
                for neighbour in adjacency[node]:
                    if neighbour not in seen:
                        seen.add(neighbour)
                        stack.append(neighbour)
            components.append(component)
        return components

    def _build_signal(self, cluster: Sequence[RawProposal]) -> Optional[ConsensusSignal]:
        first = cluster[0]
        count = len(cluster)
        sources = sorted(p.source for p in cluster)

        weights = [max(self.model_weights.get(p.source, 1.0), 0.0) for p in cluster]
        total_weight = sum(weights)
        if total_weight > 0:
            confidence = sum(p.confidence * w for p, w in zip(cluster, weights)) / total_weight
        else:
            confidence = sum(p.confidence for p in cluster) / count

        reasons: List[str] = []
        for p in cluster:
            for reason in p.reasons:
                if reason not in reasons:
                    reasons.append(reason)

        triggers = {p.entry_trigger for p in cluster if p.entry_trigger}

        try:
            return ConsensusSignal(
                symbol=first.symbol,
                direction=first.direction,
                entry=round(sum(p.entry for p in cluster) / count, 8),
                stop_loss=round(sum(p.stop_loss for p in cluster) / count, 8),
                take_profit=round(sum(p.take_profit for p in cluster) / count, 8),
                confidence=round(min(max(confidence, 0.0), 100.0), 2),
                ai_sources=sources,
                tier=Tier.GOLD if count >= self.tolerance.gold_sources else Tier.SILVER,
                reasons=reasons,
                entry_trigger=triggers.pop() if len(triggers) == 1 else None,
            )
        except ValidationError as e:
            logger.warning(f"{first.symbol}: averaged consensus levels invalid: {e}")
            return None
