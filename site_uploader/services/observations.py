"""
Observation Repository - Single Responsibility: persist observation rows.

Implements Repository Pattern over the backend's REST table API.
"""
from typing import Any, Dict, List, Optional
import asyncio
import logging

from ..protocols import IAPIClient, IStorageClient

logger = logging.getLogger(__name__)


class ObservationRepository:
    """Repository for the ``observations`` table."""

    def __init__(self, api_client: IAPIClient):
        self._api = api_client

    async def create_observations(
        self,
        uploads: List[Dict[str, Any]],
        user_id: str,
        site_id: Optional[str] = None,
        labels: Optional[List[str]] = None,
    ) -> None:
        """
        Insert one observation per uploaded photo.

        Args:
            uploads: dicts with at least ``path`` (storage path of the photo)
            user_id: Owner of the observations
            site_id: Optional site to attach them to
            labels: Optional labels applied to every row
        """
        if not uploads:
            return

        rows = []
        for upload in uploads:
            row = {"user_id": user_id, "photo_url": upload["path"]}
            if site_id:
                row["site_id"] = site_id
            if labels:
                row["labels"] = list(labels)
            rows.append(row)

        logger.info(f"Creating {len(rows)} observation(s)")
        await self._api.post(
            "/rest/v1/observations",
            json=rows,
            headers={"Prefer": "return=minimal"},
        )


def needs_signed_url_refresh(observations: List[Dict[str, Any]]) -> bool:
    """True if any observation has a photo but no signed URL."""
    return any(
        (obs.get("photo_url") or "").strip() and not obs.get("signed_url")
        for obs in observations
    )


async def refresh_signed_urls(
    observations: List[Dict[str, Any]],
    storage: IStorageClient,
    ttl: int = 3600,
) -> List[Dict[str, Any]]:
    """
    Refresh signed URLs for observations that have photos.

    A failed or empty refresh keeps the previous URL. When nothing changed
    the input list itself is returned.
    """
    if not observations:
        return observations

    async def refresh(obs: Dict[str, Any]) -> Dict[str, Any]:
        photo_url = (obs.get("photo_url") or "").strip()
        if not photo_url:
            return obs
        try:
            fresh = await storage.create_signed_url(photo_url, ttl)
        except Exception as e:
            logger.warning(f"Failed to refresh signed URL for observation {obs.get('id')}: {e}")
            return obs
        return {**obs, "signed_url": fresh or obs.get("signed_url")}

    updated = await asyncio.gather(*(refresh(obs) for obs in observations))

    changed = any(
        new.get("signed_url") != old.get("signed_url")
        for new, old in zip(updated, observations)
    )
    return list(updated) if changed else observations
