"""Generation-endpoint HTTP client.

Processing flow:
    1. Resolve the active provider from `BotConfig.provider`.
    2. Optionally load the provider API key from its key file.
    3. Build the JSON payload as a dict; `requests` serializes it, so quotes
       and control characters in prompts are escaped correctly.
    4. Dispatch on the provider's response shape:
       - `single`: one call, one image reference (`{data: [{url|b64_json}]}`).
       - `fragments`: retry loop, base64 fragments (`{images: [...]}`).

Retry behavior (fragments shape):
    - Only HTTP 200 ends the loop successfully.
    - Any other status moves on to the next attempt, up to `max_attempts`.
    - A transport error (`requests.RequestException`) aborts at once; it is
      not retried.
    - The loop also stops once `generation_timeout` seconds have elapsed.

Timing:
    Elapsed time runs from the first attempt's issuance until the loop ends,
    success or failure, and is written once onto the request.

Error handling strategy:
    Every failure raises `GenerationFailure` carrying elapsed seconds and the
    number of attempts issued. No partial result is returned.

Security considerations:
    API keys are sent as bearer headers and never logged.
"""

import base64
import binascii
import logging
import time

import requests

from disce.config import SHAPE_FRAGMENTS, SHAPE_SINGLE, BotConfig, load_key
from disce.core.errors import GenerationFailure
from disce.core.request_types import (
    FragmentResult,
    GenerationRequest,
    GenerationResult,
    SingleImageResult,
)


logger = logging.getLogger(__name__)


class GenerationClient:
    """Issues generation calls against the configured provider.

    Args:
        config: Process configuration.
        session: Object with a `requests`-compatible `post`. Defaults to the
            `requests` module, so every call opens its own connection and
            concurrent pipelines share no session state.
        clock: Monotonic clock in seconds, injectable for tests.
    """

    def __init__(self, config: BotConfig, session=None, clock=time.monotonic):
        self.config = config
        self.session = session if session is not None else requests
        self.clock = clock

    def build_payload(self, prompt: str) -> dict:
        """Return the provider-specific JSON body for `prompt`."""
        if self.config.response_shape == SHAPE_SINGLE:
            return {
                "prompt": prompt,
                "n": self.config.image_count,
                "size": self.config.image_size,
            }
        return {"prompt": prompt}

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        key_file = self.config.provider_config.get("key_file")

        if key_file is not None:
            api_key = load_key(key_file)
            if not api_key:
                raise GenerationFailure(f"Image API key file missing or empty: {key_file}")
            headers["Authorization"] = f"Bearer {api_key}"

        return headers

    def _post(self, headers: dict, payload: dict):
        return self.session.post(
            self.config.provider_config["url"],
            json=payload,
            headers=headers,
            timeout=self.config.request_timeout,
        )

    def generate(self, request: GenerationRequest) -> GenerationResult:
        """Run one generation request to completion or terminal failure.

        Args:
            request: The accepted request. Its `duration` is recorded here.

        Returns:
            `SingleImageResult` or `FragmentResult` depending on provider.

        Raises:
            GenerationFailure: Missing key, transport error, non-success
                status after all attempts, time budget exhausted, or malformed
                response body.
        """
        logger.info("[%s] Fetching images for prompt %r", request.id, request.prompt)

        headers = self._headers()
        payload = self.build_payload(request.prompt)

        if self.config.response_shape == SHAPE_FRAGMENTS:
            return self._generate_fragments(request, headers, payload)
        return self._generate_single(request, headers, payload)

    def _generate_single(self, request, headers, payload) -> SingleImageResult:
        start = self.clock()
        try:
            response = self._post(headers, payload)
        except requests.RequestException as exc:
            duration = self.clock() - start
            request.record_duration(duration)
            raise GenerationFailure(f"Image request failed: {exc}", duration, 1) from exc

        duration = self.clock() - start
        request.record_duration(duration)

        if response.status_code != 200:
            raise GenerationFailure(
                f"Image request failed with status {response.status_code}", duration, 1
            )

        url, data = parse_single_response(response, duration)
        logger.info("[%s] Success after 1 try (%.1fs)", request.id, duration)
        return SingleImageResult(duration=duration, attempts=1, url=url, data=data)

    def _generate_fragments(self, request, headers, payload) -> FragmentResult:
        max_attempts = self.config.max_attempts
        budget = self.config.generation_timeout
        start = self.clock()
        attempts = 0
        last_status = None

        while attempts < max_attempts:
            attempts += 1
            try:
                response = self._post(headers, payload)
            except requests.RequestException as exc:
                duration = self.clock() - start
                request.record_duration(duration)
                raise GenerationFailure(
                    f"Transport error on attempt {attempts}: {exc}", duration, attempts
                ) from exc

            if response.status_code == 200:
                duration = self.clock() - start
                request.record_duration(duration)
                logger.info("[%s] Success after %d tries (%.1fs)", request.id, attempts, duration)
                fragments = parse_fragment_response(response, duration, attempts)
                return FragmentResult(duration=duration, attempts=attempts, fragments=fragments)

            last_status = response.status_code
            logger.debug("[%s] Attempt %d returned status %s", request.id, attempts, last_status)

            if budget is not None and self.clock() - start >= budget:
                duration = self.clock() - start
                request.record_duration(duration)
                raise GenerationFailure(
                    f"Generation time budget of {budget:.0f}s exhausted "
                    f"(last status {last_status})",
                    duration,
                    attempts,
                )

        duration = self.clock() - start
        request.record_duration(duration)
        raise GenerationFailure(
            f"Failed to get images for request (last status {last_status})",
            duration,
            attempts,
        )


def _json_body(response, duration: float, attempts: int) -> dict:
    try:
        body = response.json()
    except ValueError as exc:
        raise GenerationFailure("Response body is not JSON", duration, attempts) from exc
    if not isinstance(body, dict):
        raise GenerationFailure("Response body is not a JSON object", duration, attempts)
    return body


def parse_single_response(response, duration: float) -> tuple[str | None, bytes | None]:
    """Extract `(url, data)` from a `{data: [{url}|{b64_json}]}` body."""
    body = _json_body(response, duration, 1)
    items = body.get("data")
    if not isinstance(items, list) or not items or not isinstance(items[0], dict):
        raise GenerationFailure("Response has no image data", duration, 1)

    first = items[0]
    if isinstance(first.get("url"), str) and first["url"]:
        return first["url"], None

    if isinstance(first.get("b64_json"), str):
        try:
            data = base64.b64decode(first["b64_json"], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise GenerationFailure("Response image is not valid base64", duration, 1) from exc
        if not data:
            raise GenerationFailure("Response image is empty", duration, 1)
        return None, data

    raise GenerationFailure("Response image has neither url nor b64_json", duration, 1)


def parse_fragment_response(response, duration: float, attempts: int) -> list[str]:
    """Extract the base64 fragment list from an `{images: [...]}` body."""
    body = _json_body(response, duration, attempts)
    images = body.get("images")
    if (
        not isinstance(images, list)
        or not images
        or not all(isinstance(image, str) for image in images)
    ):
        raise GenerationFailure("Response has no image fragments", duration, attempts)
    return images
