"""Host mapping files: ``externalName[=internalName]`` per line."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from .errors import UnreadableFileError
from .models import HostIdentity

COMMENT_PREFIXES = ("#", "!")


def parse_host_mapping(text: str) -> list[HostIdentity]:
    """Parse mapping text into host identities, preserving source order.

    Blank lines and lines starting with ``#`` or ``!`` are skipped. When the
    internal name is missing or empty it defaults to the external name.
    Duplicate external names are kept as separate entries.
    """
    identities = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line or line.startswith(COMMENT_PREFIXES):
            continue

        external, _, internal = line.partition("=")
        external = external.strip()
        internal = internal.strip()
        identities.append(HostIdentity(external, internal or external))

    return identities


def load_host_mapping(path: str | Path) -> list[HostIdentity]:
    """Read and parse a host mapping file."""
    path = Path(path).expanduser()
    try:
        text = path.read_text()
    except OSError as e:
        raise UnreadableFileError(f"File {path} cannot be read: {e.strerror or e}") from e
    return parse_host_mapping(text)


def format_host_mapping(identities: Iterable[HostIdentity]) -> str:
    """Serialize identities back into mapping text."""
    lines = []
    for identity in identities:
        if identity.internal_name == identity.external_name:
            lines.append(identity.external_name)
        else:
            lines.append(f"{identity.external_name}={identity.internal_name}")
    return "".join(line + "\n" for line in lines)


def external_names(identities: Iterable[HostIdentity]) -> list[str]:
    return [identity.external_name for identity in identities]
