"""Name transliteration for device write paths.

The terminal firmware stores names in a fixed-width byte field and renders
only a narrow character set, so Latin letters with diacritics are folded to
ASCII before a user record is written. Decoding never transliterates.
"""

TRANSLITERATION_TABLE = str.maketrans({
    # Turkish
    "ç": "c", "Ç": "C",
    "ğ": "g", "Ğ": "G",
    "ı": "i", "İ": "I",
    "ö": "o", "Ö": "O",
    "ş": "s", "Ş": "S",
    "ü": "u", "Ü": "U",
    # Circumflex vowels
    "â": "a", "Â": "A",
    "ê": "e", "Ê": "E",
    "î": "i", "Î": "I",
    "ô": "o", "Ô": "O",
    "û": "u", "Û": "U",
    # Other common Latin letters
    "á": "a", "Á": "A", "à": "a", "À": "A", "ä": "a", "Ä": "A",
    "ã": "a", "Ã": "A", "å": "a", "Å": "A",
    "é": "e", "É": "E", "è": "e", "È": "E", "ë": "e", "Ë": "E",
    "í": "i", "Í": "I", "ì": "i", "Ì": "I", "ï": "i", "Ï": "I",
    "ó": "o", "Ó": "O", "ò": "o", "Ò": "O", "õ": "o", "Õ": "O",
    "ø": "o", "Ø": "O",
    "ú": "u", "Ú": "U", "ù": "u", "Ù": "U",
    "ñ": "n", "Ñ": "N",
    "ß": "ss",
    "æ": "ae", "Æ": "AE",
    "œ": "oe", "Œ": "OE",
})


def transliterate(name: str) -> str:
    """Fold characters the firmware cannot store to ASCII equivalents."""
    return name.translate(TRANSLITERATION_TABLE)


def encode_name(name: str, width: int) -> bytes:
    """Transliterate and encode a name into a fixed-width field.

    Truncation never splits a multi-byte character.
    """
    raw = transliterate(name).encode("utf-8")
    if len(raw) <= width:
        return raw
    return raw[:width].decode("utf-8", errors="ignore").encode("utf-8")
