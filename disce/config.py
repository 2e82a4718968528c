"""Runtime configuration for the bot, the generation client, and the compositor.

Architectural role:
    Centralizes provider selection, credential lookup, and lifecycle limits for
    `disce.image`, `disce.commands`, `disce.core.engine` and the API adapters.

Loading model:
    `load_config()` is called once by an entrypoint. It reads `.env` through
    `python-dotenv`, then the process environment, and returns a frozen
    `BotConfig` that is passed explicitly to every component. Nothing in the
    package reads the environment after startup.

Determinism:
    Deterministic for a fixed process environment and key files.

Failure behavior:
    - Malformed numeric values or an unknown provider raise `ValueError`.
    - Missing provider key material is represented as `None`; the generation
      client turns it into a `GenerationFailure` when the provider needs a key.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


# Response shapes understood by `disce.image.client`.
SHAPE_SINGLE = "single"
SHAPE_FRAGMENTS = "fragments"

# Image-generation endpoint map.
IMAGE_PROVIDERS = {

    "openai": {
        "url": "https://api.openai.com/v1/images/generations",
        "key_file": "config/openai.key",
        "shape": SHAPE_SINGLE
    },

    "dalle_mini": {
        "url": "https://bf.dallemini.ai/generate",
        "key_file": None,
        "shape": SHAPE_FRAGMENTS
    }

}

DEFAULT_COMMAND_PREFIX = "/dalle "
DEFAULT_RETRY_EMOJI = "\N{CLOCKWISE RIGHTWARDS AND LEFTWARDS OPEN CIRCLE ARROWS}"


def load_key(path):
    """Load API key from environment override or key file.

    Resolution order:
        1. Environment variable inferred from file stem (for example
           `config/openai.key` -> `OPENAI_API_KEY`).
        2. Raw file contents at `path`.

    Args:
        path: Configured key file path or `None`.

    Returns:
        Key string or `None` when not available.
    """
    if not path:
        return None
    key_name = os.path.splitext(os.path.basename(path))[0].upper() + "_API_KEY"
    env_value = os.getenv(key_name)
    if env_value:
        return env_value
    if not os.path.exists(path):
        return None
    with open(path, "r") as f:
        return f.read().strip()


@dataclass(frozen=True)
class BotConfig:
    """Read-only process configuration.

    Attributes:
        discord_token: Bot token; only the Discord adapter needs it.
        provider: Key into `IMAGE_PROVIDERS`.
        max_attempts: Attempt bound for the retrying provider shape.
        request_timeout: Per-HTTP-call timeout in seconds.
        generation_timeout: Total time budget for one retry loop, in seconds.
        command_prefix: Command literal, matched case-insensitively.
        retry_emoji: Reaction symbol that requests a regeneration.
        allowed_user_id: When set, the only author admitted to trigger requests.
        special_user_id: User whose result captions use `special_user_text`.
        special_user_text: Caption override for `special_user_id`.
        server_names: Guild names the bot serves; empty means all.
        scratch_dir: Directory for transient compositing files.
        max_reply_hops: Upper bound on reply-chain walks.
        image_size: Size parameter for single-shot providers.
        image_count: Image count parameter for single-shot providers.
        jpeg_quality: Encode quality for composite images.
        log_level: Root logging level name.
    """

    discord_token: str | None = None
    provider: str = "dalle_mini"
    max_attempts: int = 10
    request_timeout: float = 120.0
    generation_timeout: float | None = 600.0
    command_prefix: str = DEFAULT_COMMAND_PREFIX
    retry_emoji: str = DEFAULT_RETRY_EMOJI
    allowed_user_id: int | None = None
    special_user_id: int | None = None
    special_user_text: str | None = None
    server_names: tuple[str, ...] = field(default_factory=tuple)
    scratch_dir: str = "."
    max_reply_hops: int = 25
    image_size: str = "1024x1024"
    image_count: int = 1
    jpeg_quality: int = 80
    log_level: str = "INFO"

    def __post_init__(self):
        if self.provider not in IMAGE_PROVIDERS:
            raise ValueError(f"Unknown image provider: {self.provider}")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.max_reply_hops < 1:
            raise ValueError("max_reply_hops must be at least 1")
        if not self.command_prefix.strip():
            raise ValueError("command_prefix must not be blank")

    @property
    def provider_config(self) -> dict:
        return IMAGE_PROVIDERS[self.provider]

    @property
    def response_shape(self) -> str:
        return self.provider_config["shape"]


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def load_config(dotenv_path: str | None = None) -> BotConfig:
    """Build the process configuration from `.env` and the environment.

    Args:
        dotenv_path: Optional explicit `.env` location; `python-dotenv`
            searches upwards from the working directory when omitted.

    Returns:
        Frozen `BotConfig`.

    Edge cases:
        - A `GENERATION_TIMEOUT` of `0` disables the total time budget.
        - `SERVER_NAMES` is comma-separated; blank entries are dropped.
    """
    load_dotenv(dotenv_path)

    generation_timeout = _env_float("GENERATION_TIMEOUT", 600.0)
    if generation_timeout is not None and generation_timeout <= 0:
        generation_timeout = None

    server_names = tuple(
        name.strip()
        for name in os.getenv("SERVER_NAMES", "").split(",")
        if name.strip()
    )

    return BotConfig(
        discord_token=os.getenv("DISCORD_TOKEN"),
        provider=os.getenv("IMAGE_PROVIDER", "dalle_mini"),
        max_attempts=_env_int("DALLE_RETRIES", 10),
        request_timeout=_env_float("REQUEST_TIMEOUT", 120.0),
        generation_timeout=generation_timeout,
        command_prefix=os.getenv("COMMAND_PREFIX", DEFAULT_COMMAND_PREFIX),
        retry_emoji=os.getenv("RETRY_EMOJI", DEFAULT_RETRY_EMOJI),
        allowed_user_id=_env_int("ALLOWED_USER_ID", None),
        special_user_id=_env_int("SPECIAL_USER_ID", None),
        special_user_text=os.getenv("SPECIAL_USER_TEXT") or None,
        server_names=server_names,
        scratch_dir=os.getenv("SCRATCH_DIR", "."),
        max_reply_hops=_env_int("MAX_REPLY_HOPS", 25),
        image_size=os.getenv("IMAGE_SIZE", "1024x1024"),
        image_count=_env_int("IMAGE_COUNT", 1),
        jpeg_quality=_env_int("JPEG_QUALITY", 80),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
