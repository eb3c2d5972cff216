"""
API request and response models for the Fragrance Collect auth service.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
identity/models.py, which own the internal domain representation. Route
handlers map between the two.

Separation of concerns: auth/ + identity/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class EmailSignupRequest(BaseModel):
    """Request body for POST /api/signup/email.

    Password complexity is checked by the account service, not here, so that
    every violated rule can be reported together in one 400 response.
    """

    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320, pattern=r"^[^@\s]+@[^@\s]+$")
    password: str = Field(min_length=1, max_length=1024)


class EmailLoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


class IdentityTokenRequest(BaseModel):
    """Request body for POST /api/login/google and POST /api/verify.

    Google Identity Services hands the browser a "credential"; older clients
    post the same value as "token". Both names are accepted, as JSON or as
    form fields (see identity_credential in api/routes/auth.py).
    """

    credential: str = Field(
        min_length=1,
        max_length=8192,
        validation_alias=AliasChoices("credential", "token"),
    )


class PreferencesRequest(BaseModel):
    """Request body for POST /api/user/preferences. Every field is optional."""

    scent_categories: list[str] = Field(default_factory=list, max_length=50)
    intensity: Optional[str] = Field(default=None, max_length=50)
    season: Optional[str] = Field(default=None, max_length=50)
    occasion: Optional[str] = Field(default=None, max_length=100)
    budget_range: Optional[str] = Field(default=None, max_length=50)
    sensitivities: Optional[str] = Field(default=None, max_length=1000)


class FavoriteRequest(BaseModel):
    """Request body for POST /api/user/favorites.

    Accepts the storefront's camelCase product keys (advertiserName, imageUrl,
    productUrl) as well as snake_case.
    """

    model_config = ConfigDict(populate_by_name=True)

    fragrance_id: str = Field(min_length=1, max_length=255)
    name: str = Field(min_length=1, max_length=500)
    advertiser_name: Optional[str] = Field(default=None, alias="advertiserName", max_length=255)
    description: Optional[str] = Field(default=None, max_length=5000)
    image_url: Optional[str] = Field(default=None, alias="imageUrl", max_length=2048)
    product_url: Optional[str] = Field(default=None, alias="productUrl", max_length=2048)
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, max_length=10)
    shipping_availability: Optional[str] = Field(default=None, max_length=50)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: str
    picture: Optional[str] = None


class AuthResponse(BaseModel):
    """Response for signup and both login endpoints. The token is also set as a cookie."""

    success: bool = True
    user: UserOut
    token: str


class UserResponse(BaseModel):
    """Response for GET /api/status and POST /api/verify."""

    success: bool = True
    user: UserOut


class TokenResponse(BaseModel):
    success: bool = True
    token: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class PreferencesOut(BaseModel):
    scent_categories: list[str] = Field(default_factory=list)
    intensity: Optional[str] = None
    season: Optional[str] = None
    occasion: Optional[str] = None
    budget_range: Optional[str] = None
    sensitivities: Optional[str] = None
    updated_at: Optional[str] = None


class PreferencesResponse(BaseModel):
    success: bool = True
    preferences: Optional[PreferencesOut] = None


class FavoriteOut(BaseModel):
    id: int
    fragrance_id: str
    name: str
    advertiser_name: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    product_url: Optional[str] = None
    price: Optional[float] = None
    currency: Optional[str] = None
    shipping_availability: Optional[str] = None
    added_at: Optional[str] = None


class FavoritesResponse(BaseModel):
    success: bool = True
    favorites: list[FavoriteOut]


class FavoriteCreatedResponse(BaseModel):
    success: bool = True
    message: str
    favorite_id: Optional[int] = None


class ErrorDetail(BaseModel):
    """Structured error detail returned in all error responses."""

    code: str
    message: str
    details: Optional[object] = None


class ErrorResponse(BaseModel):
    """Envelope for all error responses: {"success": false, "error": {"code", "message", "details"}}."""

    success: bool = False
    error: ErrorDetail


class ComponentHealth(BaseModel):
    app: str = "ok"
    database: str


class HealthResponse(BaseModel):
    """Response model for GET /api/health."""

    status: str = "healthy"
    version: str
    components: ComponentHealth
