from typing import List, Optional
from pydantic import BaseModel, Field


class ArtistSummary(BaseModel):
    """Artist reference embedded in a track."""
    id: int = Field(..., description="Deezer artist id")
    name: str = Field(..., description="Artist name")


class AlbumSummary(BaseModel):
    """Album reference embedded in a track."""
    id: int = Field(..., description="Deezer album id")
    title: str = Field(..., description="Album title")
    cover_medium: Optional[str] = Field(None, description="250x250 cover URL")
    cover_big: Optional[str] = Field(None, description="500x500 cover URL")


class TrackSummary(BaseModel):
    """A playlist track reduced to the fields the player uses."""
    id: int
    title: str
    duration: int = Field(0, description="Duration in seconds")
    artist: ArtistSummary
    album: AlbumSummary
    preview: Optional[str] = Field(None, description="30-second preview URL")


class BackgroundImageResponse(BaseModel):
    """Background image served from (or freshly written to) the image cache."""
    success: bool = True
    imageUrl: str
    queryUsed: str
    cached: bool = Field(..., description="True when no new image was fetched for this request")
    lastUpdated: str = Field(..., description="ISO-8601 time of the last successful fetch")


class BackgroundImageError(BaseModel):
    success: bool = False
    error: str
    cachedImageAvailable: bool
    cachedImageUrl: Optional[str] = None
    details: Optional[str] = None


class AudioAnalysisResponse(BaseModel):
    """Coarse per-slice byte energy of a downloaded audio file."""
    success: bool = True
    frequencies: List[float] = Field(..., description="32 normalized slice energies in [0, 1]")
    sampleRate: int = Field(..., description="Assumed sample rate in Hz")
    duration: float = Field(..., description="Approximate duration in seconds (bytes / sampleRate)")
