from __future__ import annotations

import logging
from typing import Optional

import requests

from cit.domain.errors import CatalogUnavailableError, NotFoundError, ValidationError
from cit.domain.models import ProductVariant, User

log = logging.getLogger("cit.catalog")


class CatalogService:
    def __init__(self, repo, auth_service=None):
        self.repo = repo
        self.auth = auth_service

    def _fetch_json(self, url: str):
        r = requests.get(url, timeout=10)
        r.raise_for_status()
        return r.json()

    def list_variants(self) -> list[ProductVariant]:
        return self.repo.list_variants()

    def get_variant(self, variant_id: str) -> ProductVariant:
        v = self.repo.get_variant(variant_id)
        if not v:
            raise NotFoundError(f"Product variant not found: {variant_id}")
        return v

    def find_variant(self, team: str, color: str) -> Optional[ProductVariant]:
        return self.repo.find_variant((team or "").strip(), (color or "").strip())

    def teams(self) -> list[str]:
        return sorted({v.team for v in self.repo.list_variants()})

    def add_variant(
        self,
        actor: User,
        team: str,
        color: str,
        image_url: Optional[str] = None,
        gallery_urls: tuple[str, ...] = (),
        video_url: Optional[str] = None,
        variant_id: Optional[str] = None,
    ) -> str:
        if self.auth is not None:
            self.auth.require_action(actor, "manage_catalog")
        team = (team or "").strip()
        color = (color or "").strip()
        if not team or not color:
            raise ValidationError("Team and color are required.")
        if variant_id is None and self.repo.find_variant(team, color):
            raise ValidationError(f"Model '{team} / {color}' already exists.")
        return self.repo.upsert_variant(team, color, image_url, tuple(gallery_urls), video_url, variant_id=variant_id)

    @staticmethod
    def _parse_variant(item: dict) -> dict:
        # remote rows may use the legacy spanish column names
        team = item.get("team", item.get("equipo"))
        color = item.get("color")
        vid = item.get("id")
        if not vid or not team or not color:
            raise ValueError(f"Catalog row missing id/team/color: {item}")
        gallery = item.get("gallery_urls") or []
        if not isinstance(gallery, list):
            raise ValueError(f"gallery_urls must be a list: {item}")
        return {
            "variant_id": str(vid),
            "team": str(team).strip(),
            "color": str(color).strip(),
            "image_url": item.get("image_url") or None,
            "gallery_urls": tuple(str(u) for u in gallery),
            "video_url": item.get("video_url") or None,
        }

    def sync_from_url(self, url: str) -> int:
        """Refresh the local catalog from a JSON array served at ``url``.

        Falls back to the cached catalog when the remote is unreachable or
        the payload is malformed. Returns the number of variants upserted.
        """
        try:
            data = self._fetch_json(url)
            if not isinstance(data, list):
                raise ValueError(f"Catalog payload must be a list, got {type(data).__name__}")
            rows = [self._parse_variant(item) for item in data]
        except (requests.RequestException, ValueError) as e:
            cached = self.repo.list_variants()
            if cached:
                log.warning("catalog_sync_failed url=%s error=%s cached=%s", url, e, len(cached))
                return 0
            raise CatalogUnavailableError(f"Catalog fetch failed and no cached catalog available. Last error: {e}") from e

        for row in rows:
            self.repo.upsert_variant(**row)
        log.info("catalog_synced url=%s variants=%s", url, len(rows))
        return len(rows)
