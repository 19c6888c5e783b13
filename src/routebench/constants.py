"""Centralized constants for routebench."""

# Endpoint bucket label for "no match / fallback"
NO_MATCH_ENDPOINT = "none"

# Endpoint labels a provider may return to mean "no match"
FALLBACK_ENDPOINT_LABELS = frozenset({"", "none", "null", "fallback", "no_match", "no match"})

# Separator used in checkpoint bucket keys ("prompt_version\x1fprovider")
BUCKET_KEY_SEPARATOR = "\x1f"

# Sweep defaults
DEFAULT_ITERATIONS = 20
DEFAULT_PROMPT_VERSIONS = ("v1", "v2", "v3")
DEFAULT_PROVIDERS = ("cohere", "claude", "deepseek")

# Token estimation when the API reports no usage (~4 characters per token)
DEFAULT_CHARS_PER_TOKEN_RATE = 0.25

# Error messages kept on failure records are clipped to this many characters
MAX_ERROR_MESSAGE_LENGTH = 500

# Report rendering
MAX_ENDPOINT_NAME_LENGTH = 40
