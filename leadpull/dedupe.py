from typing import Optional, Tuple


def normalize_email(email: Optional[str]) -> str:
    """Trim + lowercase. Returns '' for missing values."""
    return (email or "").strip().lower()


def make_dedupe_key(workspace_id: str, email: Optional[str]) -> Tuple[str, str]:
    """
    Stable dedupe key for a lead: (workspace_id, normalized email).

    Provider-assigned ids are deliberately not part of the key, so re-pulling
    the same contact under a new audience id still dedupes.
    """
    return (str(workspace_id).strip(), normalize_email(email))
