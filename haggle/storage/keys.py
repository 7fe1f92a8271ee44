"""Store key composition."""

from urllib.parse import quote


def compose_key(*parts) -> str:
    """
    Join key parts with ":" after percent-encoding each one.

    Encoding keeps "A:B" + "C" distinct from "A" + "B:C" and escapes glob
    characters, so prefixes built from caller input are safe to scan.
    """
    return ":".join(quote(str(part), safe="") for part in parts)
