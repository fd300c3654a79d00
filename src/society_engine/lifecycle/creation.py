"""Two-phase creation for media-backed resources.

    validate draft -> create Pending placeholder (media = [])
                   -> upload every media item concurrently
                   -> write media URLs

If anything after the placeholder write fails or is cancelled, the
placeholder is deleted before the original error is re-raised. A failed compensating delete is
logged and never replaces the original error. Nothing is retried and a
failed creation cannot be resumed; callers submit a new draft.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Generic, Mapping, TypeVar

from society_engine.core.drafts import MediaDraft, parse_draft
from society_engine.core.errors import StoreError, UploadError, ValidationError
from society_engine.core.interfaces import IMediaReader, IObjectStorage
from society_engine.core.models import Document, Principal
from society_engine.repository.resource_repository import ResourceRepository
from society_engine.storage.object_storage import media_path

logger = logging.getLogger(__name__)

DocT = TypeVar("DocT", bound=Document)
DraftT = TypeVar("DraftT", bound=MediaDraft)


class CreationOrchestrator(Generic[DraftT, DocT]):
    """Creates resources of one kind without exposing half-uploaded media.

    Args:
        repository: Repository of the resource collection.
        draft_cls: Draft model; its ``to_placeholder`` builds the Pending
            record.
        storage: Object storage receiving the media.
        media_reader: Resolves draft media URIs to bytes.
        folder: Storage folder for this kind (e.g. ``"marketplace"``).
        max_media_items: Upper bound on media per resource.
    """

    def __init__(
        self,
        repository: ResourceRepository[DocT],
        draft_cls: type[DraftT],
        storage: IObjectStorage,
        media_reader: IMediaReader,
        folder: str,
        max_media_items: int = 10,
    ) -> None:
        self._repository = repository
        self._draft_cls = draft_cls
        self._storage = storage
        self._reader = media_reader
        self._folder = folder
        self._max_media = max_media_items

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self, data: Mapping[str, Any] | DraftT) -> DraftT:
        """Validate a draft, reporting every violated field at once."""
        errors: dict[str, str] = {}
        draft: DraftT | None = None
        try:
            draft = parse_draft(self._draft_cls, data)
        except ValidationError as exc:
            errors.update(exc.errors)

        if draft is not None:
            photos = draft.photos
        elif isinstance(data, Mapping):
            photos = data.get("photos") or []
        else:
            photos = []

        if "photos" not in errors:
            if not photos:
                errors["photos"] = "At least one photo is required"
            elif len(photos) > self._max_media:
                errors["photos"] = f"At most {self._max_media} photos are allowed"

        if errors or draft is None:
            raise ValidationError(errors)
        return draft

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        data: Mapping[str, Any] | DraftT,
        owner: Principal,
        **placeholder_fields: Any,
    ) -> str:
        """Create a resource and upload its media. Returns the resource id.

        Raises:
            ValidationError: The draft is invalid; nothing was written.
            UploadError: A media item could not be read or uploaded; the
                placeholder has been deleted.
        """
        draft = self.validate(data)
        placeholder = draft.to_placeholder(owner, **placeholder_fields)
        resource_id = await self._repository.create(placeholder)

        try:
            created = await self._repository.get(resource_id)
            if created.created_at is None:
                raise StoreError(
                    f"{self._repository.collection}/{resource_id} has no creation timestamp"
                )
            urls = await self._upload_all(
                draft.photos, owner.principal_id, resource_id, created.created_at,
            )
            await self._repository.update(resource_id, {"media": urls})
        except BaseException as exc:
            # Also on cancellation: a caller's timeout must not leave the placeholder
            await asyncio.shield(self._compensate(resource_id, exc))
            raise

        logger.info(
            "Created %s/%s with %d media item(s)",
            self._repository.collection, resource_id, len(urls),
        )
        return resource_id

    async def _upload_all(
        self,
        uris: list[str],
        owner_id: str,
        resource_id: str,
        created_at: datetime,
    ) -> list[str]:
        """Upload all media concurrently; succeed only if every upload does."""
        paths = [
            media_path(self._folder, owner_id, resource_id, index, created_at)
            for index in range(len(uris))
        ]
        results = await asyncio.gather(
            *(self._upload_one(uri, path) for uri, path in zip(uris, paths)),
            return_exceptions=True,
        )
        for path, result in zip(paths, results):
            if isinstance(result, UploadError):
                raise result
            if isinstance(result, Exception):
                raise UploadError(path, str(result)) from result
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def _upload_one(self, uri: str, path: str) -> str:
        data = await self._reader.read(uri)
        return await self._storage.upload(data, path)

    async def _compensate(self, resource_id: str, cause: BaseException) -> None:
        logger.warning(
            "Creation of %s/%s failed (%r); deleting placeholder",
            self._repository.collection, resource_id, cause,
        )
        try:
            await self._repository.delete(resource_id)
        except Exception:
            logger.exception(
                "Compensating delete of %s/%s failed; original error: %s",
                self._repository.collection, resource_id, cause,
            )
