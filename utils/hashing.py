"""
Content fingerprints used for change detection.

A record is reprocessed only when the digest of its tracked fields changes.
Serialization is compact JSON with a fixed key order, so digests stay
comparable with hashes already stored in the database.
"""

import hashlib
import json
from typing import Optional, Sequence


def _digest(payload: dict) -> str:
    serialized = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def hash_repo_metadata(
    owner: str,
    name: str,
    label: str,
    source_id: str,
    languages: Optional[Sequence[str]] = None,
) -> str:
    """
    Fingerprint the metadata of a repository.

    Args:
        owner: Repository owner (e.g., "facebook")
        name: Repository name (e.g., "react")
        label: Good-first-issue label tracked for this repo
        source_id: Identifier of the source adapter that discovered it
        languages: Byte-ordered language list (full-metadata depth only).
                   None leaves languages out of the digest entirely.

    Returns:
        64-character hex SHA-256 digest
    """
    payload = {
        "owner": owner,
        "name": name,
        "goodFirstIssueTag": label,
        "dataSourceId": source_id,
    }
    if languages is not None:
        payload["languages"] = list(languages)
    return _digest(payload)


def hash_issue_metadata(
    comment_count: int,
    state: str,
    assignees: Optional[Sequence[str]],
) -> str:
    """
    Fingerprint the reconciliation-relevant fields of an issue.

    Title and body are not part of the digest. An empty assignee list hashes
    the same as None (unassigned).
    """
    payload = {
        "commentCount": comment_count,
        "state": state,
        "assigneeStatus": list(assignees) if assignees else None,
    }
    return _digest(payload)
