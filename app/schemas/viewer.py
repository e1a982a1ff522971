"""Pydantic schemas for the viewer configuration document."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from app.core.config import ViewerSettings


class ViewerConfig(BaseModel):
    """Settings object embedded into the viewer page as ``window.IMMICH_CONFIG``.

    Field names are serialized in camelCase because the browser script reads
    them under those names.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    interval: int = Field(
        ..., ge=1, description="Seconds each photo stays on screen."
    )
    transition: str = Field(
        ..., description="Slide transition style (e.g. 'fade')."
    )
    image_fit: str = Field(
        ..., alias="imageFit", description="CSS fit mode (e.g. 'cover', 'contain')."
    )
    album_id: str = Field(
        "",
        alias="albumId",
        description="Comma-separated album ids; empty string shows favorites.",
    )
    debug: bool = Field(
        False, description="Enables client-side debug logging."
    )

    @classmethod
    def from_settings(cls, viewer: ViewerSettings) -> "ViewerConfig":
        return cls(
            interval=viewer.interval,
            transition=viewer.transition,
            image_fit=viewer.image_fit,
            album_id=viewer.album_id,
            debug=viewer.debug,
        )
