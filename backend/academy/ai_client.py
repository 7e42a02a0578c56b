from __future__ import annotations
import asyncio
import json
import logging
import re
import httpx
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional
from .analysis import StudentScore
from .prompts import SYSTEM_PROMPT
from .settings import Settings, settings

logger = logging.getLogger(__name__)

GENERATION_CONFIG: Dict[str, Any] = {
	"responseMimeType": "application/json",
	"maxOutputTokens": 2000,
	"temperature": 0.7,
}


class AIProviderError(Exception):
	def __init__(self, message: str, *, transient: bool = True, status_code: Optional[int] = None) -> None:
		super().__init__(message)
		self.transient = transient
		self.status_code = status_code


class AIRateLimitedError(AIProviderError):
	"""Provider answered 429 / quota exhausted."""


def extract_json_object(text: str) -> Dict[str, Any]:
	if not text or not text.strip():
		raise AIProviderError("empty response from provider")
	candidates = [text]
	code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
	if code_block:
		candidates.append(code_block.group(1))
	first = text.find("{")
	last = text.rfind("}")
	if first != -1 and last != -1 and last > first:
		candidates.append(text[first : last + 1])
	for candidate in candidates:
		try:
			data = json.loads(candidate)
		except ValueError:
			continue
		if isinstance(data, dict):
			return data
	raise AIProviderError("provider did not return a JSON object")


def _error_from_http(err: httpx.HTTPStatusError, provider: str) -> AIProviderError:
	status = err.response.status_code
	if status == 429:
		return AIRateLimitedError(f"{provider} rate limited (429)", status_code=status)
	# 5xx is worth another try, other 4xx (bad key, bad request) will not change
	return AIProviderError(f"{provider} returned HTTP {status}", transient=status >= 500, status_code=status)


@dataclass
class AnalysisRequest:
	prompt: str
	student_name: str
	score: StudentScore


@dataclass
class AnalysisResult:
	data: Dict[str, Any]
	provider: str


class GeminiProvider:
	name = "gemini"

	def __init__(
		self,
		api_key: str,
		*,
		model: str = "gemini-2.0-flash",
		provider: str = "ai_studio",
		vertex_region: str = "us-central1",
		vertex_project: Optional[str] = None,
		base_url: Optional[str] = None,
		timeout: float = 30,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		if not api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.api_key = api_key
		self.model = model
		if provider == "vertex":
			project = vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{vertex_region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{vertex_region}/publishers/google/models/{model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
			self._auth_in_query = True
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

	async def complete(self, prompt: str) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		payload: Dict[str, Any] = {
			"contents": [{"parts": [{"text": prompt}]}],
			"generationConfig": GENERATION_CONFIG,
		}
		try:
			r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise _error_from_http(http_err, self.name) from http_err
		except httpx.RequestError as net_err:
			raise AIProviderError(f"{self.name} request failed: {net_err}") from net_err
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise AIProviderError(f"Unexpected Gemini response: {r.text[:200]}") from err

	async def aclose(self) -> None:
		await self._client.aclose()


class OpenAIProvider:
	"""Any OpenAI-compatible /chat/completions endpoint."""

	name = "openai"

	def __init__(
		self,
		api_key: str,
		*,
		model: str = "gpt-4o-mini",
		base_url: str = "https://api.openai.com/v1/chat/completions",
		timeout: float = 30,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		if not api_key:
			raise ValueError("OPENAI_API_KEY is not configured")
		self.model = model
		self.base_url = base_url
		self._headers = {
			"Authorization": f"Bearer {api_key}",
			"Content-Type": "application/json",
		}
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

	async def complete(self, prompt: str) -> str:
		payload: Dict[str, Any] = {
			"model": self.model,
			"messages": [
				{"role": "system", "content": SYSTEM_PROMPT},
				{"role": "user", "content": prompt},
			],
			"response_format": {"type": "json_object"},
			"max_completion_tokens": 2000,
			"temperature": 0.7,
		}
		try:
			r = await self._client.post(self.base_url, headers=self._headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise _error_from_http(http_err, self.name) from http_err
		except httpx.RequestError as net_err:
			raise AIProviderError(f"{self.name} request failed: {net_err}") from net_err
		try:
			data = r.json()
			return data["choices"][0]["message"]["content"] or ""
		except (ValueError, KeyError, IndexError, TypeError) as err:
			raise AIProviderError(f"Unexpected OpenAI response: {r.text[:200]}") from err

	async def aclose(self) -> None:
		await self._client.aclose()


class LocalAnalysisStrategy:
	"""Builds the narrative from the numbers alone; never fails and makes no network call."""

	name = "fallback"

	def analyze(self, request: AnalysisRequest) -> Dict[str, Any]:
		score = request.score
		name = request.student_name
		strengths = score.strength_domains
		weaknesses = score.weakness_domains
		if strengths and not weaknesses:
			propensity = "안정적 실력형"
		elif weaknesses and not strengths:
			propensity = "성장 가능형"
		else:
			propensity = "균형 잡힌 발전형"
		description = f"{name} 학생은 "
		if strengths:
			description += f"{', '.join(strengths)} 영역에서 강점을 보이며 "
		description += "체계적인 학습을 통해 더욱 성장할 수 있습니다."
		summary = f"{name} 학생은 전체적으로 {score.raw_score}점({score.percentile}%)을 기록하며 {score.grade}등급에 해당합니다. "
		if strengths:
			summary += f"{', '.join(strengths)}에서 우수한 성과를 보였고, "
		if weaknesses:
			summary += f"{', '.join(weaknesses)}에서 보완이 필요합니다."
		else:
			summary += "전반적으로 양호한 수준입니다."
		return {
			"propensityType": propensity,
			"propensityDescription": description,
			"overallSummary": summary,
		}


Provider = Any  # GeminiProvider | OpenAIProvider: async complete(prompt) -> str


class AIAnalysisClient:
	"""Tries each remote provider in order, then the local strategy.

	Each remote provider gets ``max_attempts`` tries with exponential backoff
	(``backoff_base * 2**(n-1)`` seconds before retry n). A provider whose last
	try was rate limited stops the chain with AIRateLimitedError.
	"""

	def __init__(
		self,
		providers: Optional[List[Provider]] = None,
		*,
		max_attempts: int = 3,
		backoff_base: float = 1.0,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
	) -> None:
		self.providers: List[Provider] = list(providers or [])
		self.local = LocalAnalysisStrategy()
		self.max_attempts = max(1, max_attempts)
		self.backoff_base = backoff_base
		self._sleep = sleep

	@property
	def provider_names(self) -> List[str]:
		return [p.name for p in self.providers]

	async def analyze(self, request: AnalysisRequest) -> AnalysisResult:
		for provider in self.providers:
			try:
				data = await self._call_with_retry(provider, request.prompt)
				return AnalysisResult(data=data, provider=provider.name)
			except AIRateLimitedError:
				raise
			except AIProviderError as err:
				logger.warning("AI provider %s exhausted: %s; moving to next strategy", provider.name, err)
		logger.info("Using local fallback analysis")
		return AnalysisResult(data=self.local.analyze(request), provider=self.local.name)

	async def _call_with_retry(self, provider: Provider, prompt: str) -> Dict[str, Any]:
		last_error: Optional[AIProviderError] = None
		for attempt in range(1, self.max_attempts + 1):
			try:
				logger.info("AI provider %s attempt %d/%d", provider.name, attempt, self.max_attempts)
				text = await provider.complete(prompt)
				return extract_json_object(text)
			except AIProviderError as err:
				last_error = err
				logger.warning("AI provider %s attempt %d failed: %s", provider.name, attempt, err)
				if not err.transient:
					break
				if attempt < self.max_attempts:
					await self._sleep(self.backoff_base * 2 ** (attempt - 1))
		raise last_error or AIProviderError(f"{provider.name} failed")

	async def aclose(self) -> None:
		for provider in self.providers:
			await provider.aclose()


def build_ai_client(cfg: Optional[Settings] = None) -> AIAnalysisClient:
	cfg = cfg or settings
	providers: List[Provider] = []
	if cfg.gemini_api_key:
		providers.append(
			GeminiProvider(
				cfg.gemini_api_key,
				model=cfg.gemini_model,
				provider=cfg.gemini_provider,
				vertex_region=cfg.vertex_region,
				vertex_project=cfg.vertex_project,
				timeout=cfg.ai_request_timeout_seconds,
			)
		)
	if cfg.openai_api_key:
		providers.append(
			OpenAIProvider(
				cfg.openai_api_key,
				model=cfg.openai_model,
				base_url=cfg.openai_base_url,
				timeout=cfg.ai_request_timeout_seconds,
			)
		)
	return AIAnalysisClient(
		providers,
		max_attempts=cfg.ai_max_attempts,
		backoff_base=cfg.ai_backoff_base_seconds,
	)
