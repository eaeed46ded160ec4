"""Public file identifiers, drawn from the OS CSPRNG via ``secrets``."""
import secrets
import string

ALPHABETS = {
    "base62": string.digits + string.ascii_uppercase + string.ascii_lowercase,
    "hex": string.digits + "abcdef",
}

# Below this length an identifier can be enumerated in practice.
MIN_RECOMMENDED_LENGTH = 5


def generate_identifier(length: int, alphabet: str = "base62") -> str:
    """Return a random, URL-safe token of exactly `length` characters."""
    if length < 1:
        raise ValueError(f"Identifier length must be positive, got {length}")
    chars = ALPHABETS.get(alphabet)
    if chars is None:
        raise ValueError(f"Unknown identifier alphabet: {alphabet!r}")
    return "".join(secrets.choice(chars) for _ in range(length))


def identifier_space(length: int, alphabet: str = "base62") -> int:
    """Number of distinct identifiers for the given configuration."""
    return len(ALPHABETS[alphabet]) ** length
