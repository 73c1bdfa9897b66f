# coding: utf-8
"""
AI Proposal Service

Каждая модель получает один и тот же prompt с индикаторами и
возвращает JSON {"signals": [...]}. Любая ошибка модели → None,
scan продолжает с остальными.
"""
import asyncio
import json
import re
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from loguru import logger
from openai import AsyncOpenAI

from config.config import (
    AI_MODELS,
    AI_TEMPERATURE,
    AI_TIMEOUT_SEC,
    OPENAI_API_KEY,
    OPENAI_BASE_URL,
)
from src.services.technical_indicators import IndicatorSnapshot, TechnicalIndicators


_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class ProposalSource(Protocol):
    """Collaborator: prompt → {model: [raw proposal dicts] | None}"""

    models: Sequence[str]

    async def propose(self, prompt: str) -> Dict[str, Optional[List[Dict[str, Any]]]]: ...


def build_prompt(snapshots: Sequence[IndicatorSnapshot], min_risk_reward: float = 2.0) -> str:
    """Prompt с индикаторами всех символов и форматом ответа."""
    blocks = "\n\n".join(TechnicalIndicators.format_for_prompt(s) for s in snapshots)
    return f"""You are an expert crypto perpetual futures trader. Analyze the market data below and identify the best trade setups.

MARKET DATA WITH TECHNICAL INDICATORS:
{blocks}

ANALYSIS RULES:
1. Trade only in the direction of the trend; ADX >= 15 required
2. Supertrend should confirm the direction
3. Prefer TRENDING regimes and INCREASING volume
4. Risk/reward must be >= {min_risk_reward} based on Entry/Stop/Target
5. Size the stop with ATR

TASK: Identify 1-3 highest conviction setups.

Respond in this exact JSON format:
{{
  "signals": [
    {{
      "symbol": "BTCUSDT",
      "direction": "LONG",
      "confidence": 85,
      "entry": 65000,
      "stopLoss": 63500,
      "takeProfit": 68000,
      "entryTrigger": "BREAKOUT/PULLBACK/REVERSAL/MOMENTUM",
      "reasons": ["ADX 32 confirms strong trend", "Supertrend UP"]
    }}
  ]
}}"""


def parse_model_response(text: Optional[str]) -> Optional[List[Dict[str, Any]]]:
    """
    Вытащить список signals из ответа модели.

    Returns:
        list of dicts или None если JSON не найден / битый
    """
    if not text:
        return None
    match = _JSON_OBJECT.search(text)
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        logger.warning(f"AI response JSON decode error: {e}")
        return None
    signals = data.get("signals") if isinstance(data, Mapping) else None
    if not isinstance(signals, list):
        return None
    return [s for s in signals if isinstance(s, Mapping)]


class OpenAIProposalService:
    """
    Все модели через OpenAI-compatible endpoint (OPENAI_BASE_URL может
    указывать на router с deepseek / grok).
    """

    def __init__(
        self,
        models: Sequence[str] = tuple(AI_MODELS),
        client: Optional[AsyncOpenAI] = None,
        timeout_sec: float = AI_TIMEOUT_SEC,
        temperature: Optional[float] = AI_TEMPERATURE,
    ):
        self.models = list(models)
        self.timeout_sec = timeout_sec
        self.temperature = temperature
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            kwargs: Dict[str, Any] = {"api_key": OPENAI_API_KEY, "timeout": self.timeout_sec}
            if OPENAI_BASE_URL:
                kwargs["base_url"] = OPENAI_BASE_URL
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def ask(self, model: str, prompt: str) -> Optional[List[Dict[str, Any]]]:
        """Один запрос к модели; ошибка → None."""
        params: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.temperature is not None:
            params["temperature"] = self.temperature
        try:
            response = await self.client.chat.completions.create(**params)
            content = response.choices[0].message.content
        except Exception as e:
            logger.error(f"🤖 [{model}] request failed: {e}")
            return None

        signals = parse_model_response(content)
        if signals is None:
            logger.warning(f"🤖 [{model}] no JSON signals in response: {(content or '')[:200]}")
        else:
            logger.info(f"🤖 [{model}] {len(signals)} proposals")
        return signals

    async def propose(self, prompt: str) -> Dict[str, Optional[List[Dict[str, Any]]]]:
        results = await asyncio.gather(*(self.ask(model, prompt) for model in self.models))
        return dict(zip(self.models, results))
