"""Request building, the Anthropic transport, and reply interpretation."""
import base64
import copy
import json
import logging

import anthropic

from config import API_VERSION, MAX_TOKENS, REQUEST_TIMEOUT_MS, TEMPERATURE, THINKING_BUDGET_TOKENS
from claudemon.errors import EndpointError, MalformedResponseError, RequestTimeout, TransportError
from claudemon.prompts import SYSTEM_PROMPT
from claudemon.tools import request_tools

logger = logging.getLogger(__name__)

IMAGE_MEDIA_TYPE = "image/png"


def _pretty_json(obj) -> str:
    """Return obj as pretty-printed JSON for logging."""
    try:
        return json.dumps(obj, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(obj)


def redact_images(obj):
    """Return a copy of obj with base64 image data replaced by its length."""
    obj = copy.deepcopy(obj)

    def _redact(node):
        if isinstance(node, dict):
            if node.get("type") == "image":
                src = node.get("source")
                if isinstance(src, dict) and src.get("type") == "base64" and "data" in src:
                    src["data"] = f"<base64 image len={len(src['data'])}>"
            for value in node.values():
                _redact(value)
        elif isinstance(node, list):
            for item in node:
                _redact(item)

    _redact(obj)
    return obj


def image_block(png: bytes) -> dict:
    return {
        "type": "image",
        "source": {
            "type": "base64",
            "media_type": IMAGE_MEDIA_TYPE,
            "data": base64.standard_b64encode(png).decode(),
        },
    }


def build_request(
    session,
    prompt_text: str,
    frame: bytes,
    previous_frame: bytes | None = None,
    search_query: str | None = None,
    system_prompt: str = SYSTEM_PROMPT,
) -> dict:
    """Assemble the messages.create body for one turn.

    The final user message carries the previous frame (when there is one),
    the current frame, then the prompt text.
    """
    content = []
    if previous_frame:
        content.append(image_block(previous_frame))
    content.append(image_block(frame))
    content.append({"type": "text", "text": prompt_text})

    messages = session.history.as_payload()
    messages.append({"role": "user", "content": content})

    body = {
        "model": session.model_id,
        "max_tokens": MAX_TOKENS,
        "system": system_prompt,
        "messages": messages,
    }
    if session.thinking_enabled:
        # Thinking requires the default temperature and max_tokens above the budget
        body["max_tokens"] = MAX_TOKENS + THINKING_BUDGET_TOKENS
        body["thinking"] = {"type": "enabled", "budget_tokens": THINKING_BUDGET_TOKENS}
    else:
        body["temperature"] = TEMPERATURE

    tools = request_tools(search_query, session.search_enabled)
    if tools:
        body["tools"] = tools
    return body


def interpret_reply(status, body) -> str:
    """Return the reply's text, or raise the error the body describes.

    Only ``text`` blocks count; ``thinking`` and tool blocks are ignored.
    """
    if not isinstance(body, dict):
        raise MalformedResponseError(f"Response body is not an object (HTTP {status})")

    error = body.get("error")
    if error is not None:
        if not isinstance(error, dict):
            raise EndpointError("api_error", str(error), status)
        raise EndpointError(str(error.get("type") or "unknown_error"), str(error.get("message") or ""), status)
    if status is not None and status >= 400:
        raise EndpointError("api_error", f"HTTP {status}", status)

    content = body.get("content")
    if not isinstance(content, list):
        raise MalformedResponseError("Response body has no content list")

    texts = []
    for block in content:
        if not isinstance(block, dict):
            raise MalformedResponseError(f"Unexpected content block: {block!r}")
        if block.get("type") == "text" and isinstance(block.get("text"), str):
            texts.append(block["text"])
    return "\n".join(texts)


class AnthropicTransport:
    """Sends request bodies through the Anthropic SDK.

    SDK retries are off: backoff belongs to the request lifecycle.
    """

    def __init__(self, api_key: str = "", timeout_ms: int = REQUEST_TIMEOUT_MS):
        self.api_key = api_key
        self.timeout_ms = timeout_ms
        self._client = None

    def set_api_key(self, api_key: str):
        self.api_key = api_key
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = anthropic.AsyncAnthropic(
                api_key=self.api_key,
                max_retries=0,
                timeout=self.timeout_ms / 1000,
                default_headers={"anthropic-version": API_VERSION},
            )
        return self._client

    async def send(self, body: dict) -> tuple[int, dict]:
        logger.debug(f"[Transport] Request (images redacted):\n{_pretty_json(redact_images(body))}")
        try:
            response = await self.client.messages.create(**body)
        except anthropic.APIStatusError as e:
            payload = e.body if isinstance(e.body, dict) else {
                "error": {"type": "api_error", "message": str(e)}
            }
            logger.debug(f"[Transport] HTTP {e.status_code}: {_pretty_json(payload)}")
            return e.status_code, payload
        except anthropic.APITimeoutError as e:
            raise RequestTimeout(str(e)) from e
        except anthropic.APIConnectionError as e:
            raise TransportError(str(e)) from e
        except anthropic.APIError as e:
            # e.g. APIResponseValidationError: a 2xx whose body the SDK rejected
            raise MalformedResponseError(str(e)) from e

        logger.info(f"[Transport] Response usage: {response.usage}")
        try:
            return 200, response.model_dump()
        except Exception as e:
            raise MalformedResponseError(f"Could not serialize response: {e}") from e
