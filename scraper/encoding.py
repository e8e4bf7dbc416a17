"""Decoding of pages served in the groupware's legacy encoding."""
import codecs

from processor.errors import DecodeError

DEFAULT_ENCODING = 'cp932'


def decode_page(content: bytes, encoding: str = DEFAULT_ENCODING) -> str:
    """
    Decode a page body into text.

    Args:
        content: Raw response body
        encoding: Codec name, Shift_JIS family by default

    Returns:
        Decoded text

    Raises:
        DecodeError: If the codec is unknown or the bytes are malformed
    """
    try:
        codecs.lookup(encoding)
    except LookupError as e:
        raise DecodeError(f"Unknown page encoding: {encoding}") from e

    try:
        return content.decode(encoding)
    except UnicodeDecodeError as e:
        raise DecodeError(
            f"Malformed {encoding} byte sequence at offset {e.start}"
        ) from e
