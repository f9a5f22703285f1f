"""
FastAPI route: School (tenant) lookup and settings.

Provides endpoints to:
    POST  /api/v1/schools                       — create a school
    GET   /api/v1/schools/by-domain/{domain}    — cache-aside lookup by alias
    GET   /api/v1/schools/{id}                  — lookup by id
    PATCH /api/v1/schools/{id}/settings         — merge-patch settings
    POST  /api/v1/schools/{id}/fondy            — verify + store Fondy credentials
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from schoolhub.schools.models import ConnectFondyInput, UpdateSchoolSettingsInput
from schoolhub.schools.service import SchoolsService, WriteResult

router = APIRouter(prefix="/api/v1/schools", tags=["schools"])


# ---------------------------------------------------------------------------
# Request / Response Schemas
# ---------------------------------------------------------------------------

class CreateSchoolRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, examples=["Creative Coding"])


class CreateSchoolResponse(BaseModel):
    id: str


class ConnectFondyRequest(BaseModel):
    merchant_id: str = Field(..., min_length=1, examples=["1396424"])
    merchant_password: str = Field(..., min_length=1)


class WriteResponse(BaseModel):
    updated: List[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_schools_service(request: Request) -> SchoolsService:
    return request.app.state.schools_service


def _write_response(result: WriteResult, response: Response) -> WriteResponse:
    if result.cache_error is not None:
        response.headers["X-Cache-Warning"] = result.cache_error.message
    return WriteResponse(updated=sorted(result.applied))


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", response_model=CreateSchoolResponse, status_code=201)
async def create_school(
    body: CreateSchoolRequest,
    service: SchoolsService = Depends(get_schools_service),
) -> CreateSchoolResponse:
    return CreateSchoolResponse(id=await service.create(body.name))


@router.get("/by-domain/{domain}")
async def get_school_by_domain(
    domain: str,
    response: Response,
    service: SchoolsService = Depends(get_schools_service),
) -> Dict[str, Any]:
    lookup = await service.get_by_domain(domain)
    response.headers["X-Cache"] = "HIT" if lookup.cached else "MISS"
    if lookup.cache_error is not None:
        response.headers["X-Cache-Warning"] = lookup.cache_error.message
    return lookup.school.public_dict()


@router.get("/{school_id}")
async def get_school(
    school_id: str,
    service: SchoolsService = Depends(get_schools_service),
) -> Dict[str, Any]:
    school = await service.get_by_id(school_id)
    return school.public_dict()


@router.patch("/{school_id}/settings", response_model=WriteResponse)
async def update_school_settings(
    school_id: str,
    body: UpdateSchoolSettingsInput,
    response: Response,
    service: SchoolsService = Depends(get_schools_service),
) -> WriteResponse:
    result = await service.update_settings(school_id, body)
    return _write_response(result, response)


@router.post("/{school_id}/fondy", response_model=WriteResponse)
async def connect_fondy(
    school_id: str,
    body: ConnectFondyRequest,
    response: Response,
    service: SchoolsService = Depends(get_schools_service),
) -> WriteResponse:
    result = await service.connect_fondy(ConnectFondyInput(
        school_id=school_id,
        merchant_id=body.merchant_id,
        merchant_password=body.merchant_password,
    ))
    return _write_response(result, response)
