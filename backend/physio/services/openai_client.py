from __future__ import annotations
import time
from typing import Dict, List, Optional

import httpx
import structlog
from openai import (
    APIConnectionError, APIResponseValidationError, APIStatusError, AsyncOpenAI, RateLimitError
)

from physio.config import Settings
from physio.errors import ApiError

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = "You are assisting a physiotherapist."


def _messages(prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": prompt},
    ]


class ChatCompletionProvider:
    """
    OpenAI 호환 chat-completions 엔드포인트(OpenRouter 등) 래퍼.
    재시도 없이 한 번만 호출하고, 실패는 ApiError 로 분류한다.
    """

    def __init__(self, client: Optional[AsyncOpenAI]):
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> "ChatCompletionProvider":
        if not settings.ai_api_key:
            # 키가 없으면 invoke 에서 실패
            return cls(None)
        headers = {"X-Title": "physio-api"}
        if settings.ai_referer:
            headers["HTTP-Referer"] = settings.ai_referer
        client = AsyncOpenAI(
            api_key=settings.ai_api_key,
            base_url=settings.ai_api_base_url,
            timeout=settings.ai_provider_timeout_s,
            max_retries=0,
            default_headers=headers,
            http_client=http_client,
        )
        return cls(client)

    async def invoke(self, prompt: str, model: str, temperature: float, correlation_id: str) -> str:
        if self._client is None:
            logger.error("provider_not_configured", model=model)
            raise ApiError(500, "generation_configuration_invalid")

        started = time.perf_counter()
        try:
            resp = await self._client.chat.completions.create(
                model=model,
                temperature=temperature,
                messages=_messages(prompt),
                extra_headers={"X-Correlation-Id": correlation_id},
            )
        except RateLimitError:
            logger.warning("provider_rate_limited", model=model)
            raise ApiError(429, "ai_rate_limited")
        except APIConnectionError as e:
            # APITimeoutError 도 여기로 온다
            logger.error("provider_unreachable", model=model, error=str(e))
            raise ApiError(502, "model_provider_unavailable")
        except APIStatusError as e:
            logger.error("provider_error_status", model=model, status=e.status_code, body=e.message)
            if e.status_code >= 500:
                raise ApiError(502, "model_provider_unavailable")
            raise ApiError(500, "ai_generation_failed")
        except (APIResponseValidationError, ValueError) as e:
            # 200 이지만 JSON 이 깨진 본문은 JSONDecodeError(ValueError) 로 올라온다
            logger.error("provider_malformed_response", model=model, error=str(e))
            raise ApiError(502, "ai_generation_failed")

        choices = getattr(resp, "choices", None) or []
        message = getattr(choices[0], "message", None) if choices else None
        content = getattr(message, "content", None) if message is not None else None
        if not isinstance(content, str) or not content.strip():
            logger.error("provider_empty_response", model=model)
            raise ApiError(502, "ai_generation_failed")

        logger.info(
            "provider_completed",
            model=model,
            elapsed_ms=round((time.perf_counter() - started) * 1000),
        )
        return content.strip()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
