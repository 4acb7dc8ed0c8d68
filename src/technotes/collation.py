import unicodedata


def collation_key(value: str) -> str:
    """Return the comparison key used for case-insensitive uniqueness.

    Mirrors a secondary-strength collation: ``"Alice"``, ``"alice"`` and
    ``"Alíce"`` all produce the same key, while different base letters do not.
    """
    decomposed = unicodedata.normalize("NFKD", value.strip().casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))
