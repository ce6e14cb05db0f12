"""
Pydantic models for registry views, request bodies and responses.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from copyright_registry.core.utils import UINT32_MAX


class AuthorStats(BaseModel):
    """Public statistics of an author profile."""
    registered: bool = Field(..., description="Whether the address registered as an author")
    work_count: int = Field(0, ge=0, description="Number of works registered by the author")
    total_disputes: int = Field(0, ge=0, description="Disputes the author took part in")
    won_disputes: int = Field(0, ge=0, description="Disputes resolved in the author's favour")


class WorkInfo(BaseModel):
    """Public metadata of a registered work."""
    work_id: int = Field(..., ge=1, description="Work identifier")
    registrant: str = Field(..., description="Address of the registering author")
    title: str = Field(..., description="Work title")
    category: str = Field(..., description="Work category")
    timestamp: int = Field(..., description="Registration time (epoch seconds)")
    verified: bool = Field(False, description="Verified by the registry owner")
    disputed: bool = Field(False, description="At least one dispute was filed")
    dispute_count: int = Field(0, ge=0, description="Number of disputes filed")


class DisputeInfo(BaseModel):
    """Public state of a dispute."""
    work_id: int = Field(..., ge=1, description="Disputed work")
    dispute_index: int = Field(..., ge=0, description="Position in the work's dispute list")
    challenger: str = Field(..., description="Address of the challenging author")
    timestamp: int = Field(..., description="Filing time (epoch seconds)")
    resolved: bool = Field(False, description="Whether the dispute was resolved")
    pending: bool = Field(False, description="Resolution requested, result not yet delivered")
    winner: Optional[str] = Field(None, description="Winning address once resolved")


class RegistryInfo(BaseModel):
    """Registry-wide information."""
    owner: str = Field(..., description="Registry owner address")
    address: str = Field(..., description="Registry principal address")
    total_works: int = Field(..., ge=0, description="Number of works ever registered")
    pending_resolutions: int = Field(0, ge=0, description="Resolutions awaiting decryption")
    fhe_backend: str = Field(..., description="Encrypted-computation backend in use")


class RegisterAuthorRequest(BaseModel):
    author_id: int = Field(..., ge=0, le=UINT32_MAX, description="Author identifier, encrypted on registration")


class RegisterWorkRequest(BaseModel):
    content_hash: int = Field(..., ge=0, le=UINT32_MAX, description="Content fingerprint, encrypted on registration")
    title: str = Field(..., description="Work title")
    category: str = Field(..., description="Work category")


class FileDisputeRequest(BaseModel):
    content_hash: int = Field(..., ge=0, le=UINT32_MAX, description="Challenger's content fingerprint")


class DecryptionCallbackRequest(BaseModel):
    request_id: str = Field(..., description="Decryption request identifier")
    result: bool = Field(..., description="Decrypted comparison result")


class WorkRegisteredResponse(BaseModel):
    work_id: int


class DisputeFiledResponse(BaseModel):
    work_id: int
    dispute_index: int


class ResolutionRequestedResponse(BaseModel):
    work_id: int
    dispute_index: int
    request_id: str


class DisputeCountResponse(BaseModel):
    work_id: int
    dispute_count: int


class AuthorWorksResponse(BaseModel):
    address: str
    work_ids: List[int] = Field(default_factory=list)


class RegisteredResponse(BaseModel):
    address: str
    registered: bool


class FingerprintResponse(BaseModel):
    """Content hash derived from an uploaded file."""
    filename: str = Field(..., description="Original filename")
    file_size: int = Field(..., ge=0, description="File size in bytes")
    file_hash: str = Field(..., description="SHA-256 hash of file content")
    content_hash: int = Field(..., ge=0, le=UINT32_MAX, description="uint32 fingerprint for registration")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Overall service status")
    version: str = Field(..., description="API version")
    components: Dict[str, Any] = Field(..., description="Component health status")
