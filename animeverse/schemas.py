"""Pydantic schemas for remote content service responses and payloads."""

from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from animeverse.core.errors import DataShapeMismatch

M = TypeVar("M", bound=BaseModel)


class WireModel(BaseModel):
    """Base for service payloads: accepts JSON keys or Python names."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ============ Catalog Schemas ============

class Episode(WireModel):
    """Single episode in an anime's episode list."""
    id: int | None = None
    temporada: int | None = None  # Season
    numero: int  # Episode number within the season
    nome: str = ""
    link: str = ""
    capa_ep: str | None = None
    comment_count: int | None = None


class EpisodePage(WireModel):
    """One page of an anime's episodes."""
    episodios: list[Episode]
    total_episodios: int = Field(alias="totalEpisodios")
    pagina: int | None = None
    itens_por_pagina: int | None = Field(default=None, alias="itensPorPagina")


class AnimeSummary(WireModel):
    """Catalog entry as shown in grids and search results."""
    id: int
    titulo: str
    capa: str | None = None
    titulo_alternativo: str | None = Field(default=None, alias="tituloAlternativo")
    sinopse: str | None = None
    generos: list[str] = []
    status: str | None = None
    tipo_midia: str | None = Field(default=None, alias="tipoMidia")
    ano_lancamento: int | None = Field(default=None, alias="anoLancamento")
    visualizacoes: int | None = None


class AnimePage(WireModel):
    """One page of the full catalog."""
    animes: list[AnimeSummary]
    total_pages: int = Field(alias="totalPages")
    total_animes: int | None = Field(default=None, alias="totalAnimes")


# ============ Comment Schemas ============

class Comment(WireModel):
    """Episode comment or reply."""
    id: int
    anime_id: int | str
    episode_number: int
    user_id: int | str
    user_nome: str = ""
    user_imagem_perfil: str | None = None
    parent_comment_id: int | None = None
    content: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def parent_id(self) -> int | None:
        return self.parent_comment_id


class CommunityPost(WireModel):
    """Community feed post. is_liked is the viewer's cached like flag."""
    id: int | str
    user_id: int | str
    user_name: str = ""
    user_avatar: str | None = None
    content_text: str = ""
    content_image_url: str | None = None
    sticker_url: str | None = None
    created_at: datetime | None = None
    likes_count: int = 0
    comments_count: int = 0
    is_liked: bool = Field(default=False, alias="isLiked")


class CommunityComment(WireModel):
    """Comment on a community post."""
    id: int | str
    post_id: int | str
    user_id: int | str
    user_name: str = ""
    user_avatar: str | None = None
    content_text: str
    created_at: datetime | None = None
    parent_comment_id: int | str | None = None

    @property
    def parent_id(self) -> int | str | None:
        return self.parent_comment_id


class LikeResponse(WireModel):
    """Authoritative like state returned by the like endpoint."""
    success: bool
    liked: bool = False
    likes_count: int = Field(default=0, alias="likesCount")


# ============ Collection Schemas ============

class CollectionStatus(str, Enum):
    """Status of an anime in the viewer's collection."""
    FAVORITE = "favorite"
    WATCHING = "watching"
    COMPLETED = "completed"
    PLANNED = "planned"
    ON_HOLD = "on_hold"
    DROPPED = "dropped"


class CollectionItem(WireModel):
    """Collection entry joined with the anime it points to. id is the anime id."""
    id: int
    collection_id: int | None = None
    user_id: int | str | None = None
    collection_status: CollectionStatus = Field(alias="collectionStatus")
    added_at: datetime | None = Field(default=None, alias="addedAt")
    last_watched_episode: str | None = Field(default=None, alias="lastWatchedEpisode")
    notes: str | None = None
    titulo: str | None = None
    capa: str | None = None


class CollectionUpsert(WireModel):
    """Body of the collection upsert call."""
    anime_id: int
    status: CollectionStatus
    notes: str | None = None
    last_watched_episode: str | None = None


# ============ Notification Schemas ============

class UserNotification(WireModel):
    """Notification for the viewer. Only is_read ever changes."""
    id: int | str
    user_id: int | str | None = None
    message: str
    type: str = "general"
    link: str | None = None
    is_read: bool = False  # Backend sends 0/1
    created_at: datetime | None = None


class ActionResponse(WireModel):
    """Generic {success, message} acknowledgement."""
    success: bool = True
    message: str | None = None


class MarkAllReadResponse(WireModel):
    success: bool = True
    marked_count: int = Field(default=0, alias="markedCount")


# ============ Shape checks ============

def _describe(data: Any) -> str:
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return f"object with message {data['message']!r}"
    return type(data).__name__


def parse_model(model: type[M], data: Any, what: str) -> M:
    """Validate a single object response, raising DataShapeMismatch on mismatch."""
    if not isinstance(data, dict):
        raise DataShapeMismatch(f"Unexpected data format for {what}: expected an object, got {_describe(data)}")
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DataShapeMismatch(f"Unexpected data format for {what}: {e.error_count()} invalid field(s)") from e


def parse_list(model: type[M], data: Any, what: str) -> list[M]:
    """Validate a list response, raising DataShapeMismatch on mismatch."""
    if not isinstance(data, list):
        raise DataShapeMismatch(f"Unexpected data format for {what}: expected a list, got {_describe(data)}")
    try:
        return TypeAdapter(list[model]).validate_python(data)
    except ValidationError as e:
        raise DataShapeMismatch(f"Unexpected data format for {what}: {e.error_count()} invalid field(s)") from e
