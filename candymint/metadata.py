"""
Off-chain Metadata Check

Fetches the JSON document behind a metadata pointer before anything is
minted against it.
"""

import requests

from .errors import NetworkError, ValidationError


def fetch_metadata(uri, timeout=10):
    """
    Fetch and sanity-check the metadata document at `uri`.

    Args:
        uri: HTTP(S) URI of the pre-uploaded metadata JSON.
        timeout: Request timeout in seconds.

    Returns:
        dict: The parsed metadata document.
    """
    try:
        resp = requests.get(uri, timeout=timeout)
    except requests.RequestException as e:
        raise NetworkError(f"could not fetch metadata from {uri}", str(e))

    try:
        resp.raise_for_status()
    except requests.HTTPError as e:
        raise ValidationError(f"metadata at {uri} returned HTTP {resp.status_code}", str(e))

    try:
        document = resp.json()
    except ValueError:
        raise ValidationError(f"metadata at {uri} is not JSON")

    if not isinstance(document, dict) or not document.get("name"):
        raise ValidationError(f"metadata at {uri} has no name")
    return document
