"""
Pydantic models for the admission.k8s.io/v1 AdmissionReview exchange.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class UserInfo(BaseModel):
    model_config = ConfigDict(extra="allow")

    username: str = ""
    groups: List[str] = []


class AdmissionRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    uid: str
    operation: str = Field(..., description="CREATE, UPDATE, DELETE or CONNECT")
    name: str = ""
    namespace: str = ""
    userInfo: UserInfo = Field(default_factory=UserInfo)
    object: Optional[dict] = None
    oldObject: Optional[dict] = None


class ResponseStatus(BaseModel):
    code: int = 403
    message: str = ""


class AdmissionResponse(BaseModel):
    uid: str
    allowed: bool
    status: Optional[ResponseStatus] = None
    patchType: Optional[str] = None
    patch: Optional[str] = None


class AdmissionReview(BaseModel):
    """Both the request and the response envelope; one of the two is set."""
    apiVersion: str = "admission.k8s.io/v1"
    kind: str = "AdmissionReview"
    request: Optional[AdmissionRequest] = None
    response: Optional[AdmissionResponse] = None
