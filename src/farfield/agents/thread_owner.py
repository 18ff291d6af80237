"""Owner client resolution for operations routed through the desktop app."""

from collections.abc import Mapping

from ..errors import OwnerUnknownError


def resolve_owner_client_id(
    owners: Mapping[str, str], thread_id: str, override: str | None = None
) -> str:
    """Return the owner client id for *thread_id*.

    The mapped owner wins. *override* (trimmed, ignored when blank) is used
    only when no mapping exists. Raises ``OwnerUnknownError`` when neither
    is available.
    """
    mapped = owners.get(thread_id)
    if mapped:
        return mapped
    if override and override.strip():
        return override.strip()
    raise OwnerUnknownError(thread_id)
