# ai_oracle.py - Azure OpenAI-backed anomaly analysis
# This file implements analysis, cross-verification and impact assessment with deterministic fallbacks.

import json
import logging
import re
from typing import Dict, Any, List, Optional
from openai import AsyncAzureOpenAI

from .models import AIAnalysisResult, VerificationResult, Severity, clamp_confidence
from .config import settings

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE = (
    "You are an analyst for a real-time anomaly detection system. "
    "Always answer with a single JSON object and nothing else."
)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class AIOracle:
    """Analysis capability used by ingestion and the workflow engine.

    When no credentials are configured, or the model call fails, every
    operation returns a deterministic result flagged as a fallback so
    callers can carry on in degraded mode.
    """

    def __init__(self, client: Optional[AsyncAzureOpenAI] = None, config: Dict[str, Any] = None):
        self.config = config or {}
        self.deployment_name = self.config.get("deployment_name", settings.openai_deployment)
        self.max_tokens = self.config.get("max_tokens", settings.openai_max_tokens)
        self.temperature = self.config.get("temperature", settings.openai_temperature)
        self.client = client or self._initialize_client()

    def _initialize_client(self) -> Optional[AsyncAzureOpenAI]:
        azure_endpoint = self.config.get("azure_endpoint") or settings.openai_endpoint
        api_key = self.config.get("api_key") or settings.openai_api_key

        if not azure_endpoint or not api_key:
            logger.warning("Azure OpenAI endpoint or API key not configured - AI oracle running in fallback mode")
            return None

        logger.info(f"Initialized Azure OpenAI client for deployment: {self.deployment_name}")
        return AsyncAzureOpenAI(
            azure_endpoint=azure_endpoint,
            api_key=api_key,
            api_version=self.config.get("api_version", settings.openai_api_version)
        )

    @property
    def available(self) -> bool:
        return self.client is not None

    # =========================
    # ANALYSIS
    # =========================

    async def analyze_anomaly(self, title: str, description: str, type: str,
                              location: str, raw_data: Dict[str, Any]) -> AIAnalysisResult:
        """Produce a structured assessment of one anomaly."""
        data = {"title": title, "description": description, "type": type,
                "location": location, "raw_data": raw_data}

        if not self.available:
            return self._fallback_analysis(data, "AI oracle not configured")

        prompt = f"""Analyze this anomaly detection event and provide a structured assessment:

Title: {title}
Description: {description}
Type: {type}
Location: {location}
Raw Data: {json.dumps(raw_data, indent=2, default=str)}

Provide analysis in the following JSON format:
{{
  "summary": "Brief summary of the anomaly",
  "severity": "low|medium|high|critical",
  "confidence": 0.0-1.0,
  "categories": ["category1", "category2"],
  "entities": ["entity1", "entity2"],
  "sentiment": "positive|negative|neutral",
  "risk_factors": ["risk1", "risk2"],
  "recommendations": ["action1", "action2"],
  "related_anomalies": ["type1", "type2"],
  "metadata": {{}}
}}"""

        try:
            parsed = await self._complete_json(prompt)
            return AIAnalysisResult(
                summary=parsed.get("summary") or description,
                severity=parsed.get("severity") or Severity.MEDIUM,
                confidence=parsed.get("confidence", 0.5),
                categories=parsed.get("categories") or [type],
                entities=parsed.get("entities") or [],
                sentiment=parsed.get("sentiment") or "neutral",
                risk_factors=parsed.get("risk_factors") or [],
                recommendations=parsed.get("recommendations") or [],
                related_anomalies=parsed.get("related_anomalies") or [],
                metadata=parsed.get("metadata") or {}
            )
        except Exception as e:
            logger.error(f"Anomaly analysis failed: {str(e)}")
            return self._fallback_analysis(data, f"AI oracle error: {str(e)}")

    async def cross_verify(self, subject_id: str, sources: List[Any]) -> VerificationResult:
        """Check whether independent sources corroborate each other."""
        if not self.available:
            return self._fallback_verification(sources, 0.75 if len(sources) >= 2 else 0.5)

        prompt = f"""Cross-verify these data sources about anomaly {subject_id} and determine if they corroborate each other:

Sources: {json.dumps(sources, indent=2, default=str)}

Respond in JSON format:
{{
  "verified": true|false,
  "confidence": 0.0-1.0,
  "matching_sources": number,
  "discrepancies": ["discrepancy1", "discrepancy2"]
}}"""

        try:
            parsed = await self._complete_json(prompt)
            return VerificationResult(
                verified=bool(parsed.get("verified", False)),
                confidence=parsed.get("confidence", 0.0),
                matching_sources=int(parsed.get("matching_sources", 0)),
                discrepancies=parsed.get("discrepancies") or []
            )
        except Exception as e:
            logger.error(f"Cross-verification failed for {subject_id}: {str(e)}")
            return self._fallback_verification(sources, 0.6)

    async def generate_impact_assessment(self, anomaly: Dict[str, Any]) -> Dict[str, Any]:
        if not self.available:
            return self._fallback_impact()

        prompt = f"""Generate an impact assessment for this anomaly:

{json.dumps(anomaly, indent=2, default=str)}

Respond in JSON format with: overall_impact, affected_areas, estimated_duration, population_affected, economic_impact, environmental_impact, recommendations."""

        try:
            return await self._complete_json(prompt)
        except Exception as e:
            logger.error(f"Impact assessment failed: {str(e)}")
            return self._fallback_impact()

    # =========================
    # HELPERS
    # =========================

    async def _complete_json(self, prompt: str) -> Dict[str, Any]:
        messages = [
            {"role": "system", "content": SYSTEM_MESSAGE},
            {"role": "user", "content": prompt}
        ]

        response = await self.client.chat.completions.create(
            model=self.deployment_name,
            messages=messages,
            max_tokens=self.max_tokens,
            temperature=self.temperature
        )

        text = response.choices[0].message.content or ""
        return self._extract_json(text)

    @staticmethod
    def _extract_json(text: str) -> Dict[str, Any]:
        match = _JSON_OBJECT.search(text)
        if not match:
            raise ValueError("No JSON object found in model response")
        parsed = json.loads(match.group(0))
        if not isinstance(parsed, dict):
            raise ValueError("Model response is not a JSON object")
        return parsed

    @staticmethod
    def _fallback_analysis(data: Dict[str, Any], reason: str) -> AIAnalysisResult:
        logger.warning(f"Using fallback analysis for '{data['title']}': {reason}")
        return AIAnalysisResult(
            summary=f"Analysis of {data['type']} anomaly: {(data['description'] or '')[:100]}...",
            severity=Severity.MEDIUM,
            confidence=0.65,
            categories=[data["type"]],
            entities=[data["location"]] if data["location"] else [],
            sentiment="neutral",
            risk_factors=["Requires further monitoring", "Potential escalation"],
            recommendations=["Continue monitoring", "Verify with additional sources"],
            related_anomalies=[],
            metadata={"mock": True, "reason": reason}
        )

    @staticmethod
    def _fallback_verification(sources: List[Any], confidence: float) -> VerificationResult:
        return VerificationResult(
            verified=len(sources) >= 2,
            confidence=clamp_confidence(confidence),
            matching_sources=len(sources),
            discrepancies=[],
            metadata={"fallback": True}
        )

    @staticmethod
    def _fallback_impact() -> Dict[str, Any]:
        return {
            "overall_impact": "medium",
            "affected_areas": ["local"],
            "estimated_duration": "hours",
            "population_affected": "unknown",
            "economic_impact": "unknown",
            "environmental_impact": "unknown",
            "recommendations": ["Monitor situation", "Prepare contingency plans"],
            "fallback": True
        }

    async def close(self):
        if self.client is not None:
            await self.client.close()
