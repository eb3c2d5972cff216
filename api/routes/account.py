"""
api/routes/account.py -- Session-gated user preferences and favorites.

Routes (mounted under /api, all require get_current_session):
  GET    /api/user/preferences                 -- {} when none saved yet
  POST   /api/user/preferences                 -- replace the preferences row
  GET    /api/user/favorites                   -- newest first
  POST   /api/user/favorites                   -- 201; 200 "Already in favorites." on repeat
  DELETE /api/user/favorites/{fragrance_id}    -- 200, idempotent

Every query is scoped by the session's user_id, never by a client-supplied ID.
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import (
    FavoriteCreatedResponse,
    FavoriteOut,
    FavoriteRequest,
    FavoritesResponse,
    MessageResponse,
    PreferencesOut,
    PreferencesRequest,
    PreferencesResponse,
)
from auth.dependencies import get_current_session
from auth.models import Session, UserFavorite, UserPreferences
from auth.store import UserStore

logger = logging.getLogger("fragrancecollect.api.account")

router = APIRouter(prefix="/user")


def _store(request: Request) -> UserStore:
    return request.app.state.user_store


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(request: Request, session: Session = Depends(get_current_session)) -> JSONResponse:
    prefs = await asyncio.to_thread(_store(request).get_preferences, session.user_id)
    if prefs is None:
        return JSONResponse(content={"success": True, "preferences": {}})
    out = PreferencesOut(
        scent_categories=prefs.scent_categories,
        intensity=prefs.intensity,
        season=prefs.season,
        occasion=prefs.occasion,
        budget_range=prefs.budget_range,
        sensitivities=prefs.sensitivities,
        updated_at=prefs.updated_at,
    )
    return JSONResponse(content=PreferencesResponse(preferences=out).model_dump())


@router.post("/preferences", response_model=MessageResponse)
async def update_preferences(
    request: Request,
    body: PreferencesRequest,
    session: Session = Depends(get_current_session),
) -> MessageResponse:
    prefs = UserPreferences(user_id=session.user_id, **body.model_dump())
    await asyncio.to_thread(_store(request).upsert_preferences, prefs)
    return MessageResponse(message="Preferences updated.")


# ---------------------------------------------------------------------------
# Favorites
# ---------------------------------------------------------------------------


@router.get("/favorites", response_model=FavoritesResponse)
async def list_favorites(request: Request, session: Session = Depends(get_current_session)) -> FavoritesResponse:
    favorites = await asyncio.to_thread(_store(request).list_favorites, session.user_id)
    return FavoritesResponse(
        favorites=[
            FavoriteOut(
                id=f.id,
                fragrance_id=f.fragrance_id,
                name=f.name,
                advertiser_name=f.advertiser_name,
                description=f.description,
                image_url=f.image_url,
                product_url=f.product_url,
                price=f.price,
                currency=f.currency,
                shipping_availability=f.shipping_availability,
                added_at=f.added_at,
            )
            for f in favorites
        ]
    )


@router.post("/favorites", response_model=FavoriteCreatedResponse, status_code=201)
async def add_favorite(
    request: Request,
    body: FavoriteRequest,
    session: Session = Depends(get_current_session),
) -> JSONResponse:
    favorite = UserFavorite(user_id=session.user_id, **body.model_dump())
    try:
        favorite_id = await asyncio.to_thread(_store(request).add_favorite, favorite)
    except IntegrityError:
        return JSONResponse(
            status_code=200,
            content=FavoriteCreatedResponse(message="Already in favorites.").model_dump(),
        )
    return JSONResponse(
        status_code=201,
        content=FavoriteCreatedResponse(message="Added to favorites.", favorite_id=favorite_id).model_dump(),
    )


@router.delete("/favorites/{fragrance_id}", response_model=MessageResponse)
async def remove_favorite(
    request: Request,
    fragrance_id: str,
    session: Session = Depends(get_current_session),
) -> MessageResponse:
    removed = await asyncio.to_thread(_store(request).remove_favorite, session.user_id, fragrance_id)
    if not removed:
        logger.debug("Favorite %s was not in user %s's list", fragrance_id, session.user_id)
    return MessageResponse(message="Removed from favorites.")
