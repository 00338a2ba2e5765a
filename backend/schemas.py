from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

PostCategory = Literal[
    "general", "pest_alert", "disease_warning", "weather_update",
    "market_info", "crop_advice", "success_story", "question",
]
Priority = Literal["low", "medium", "high", "urgent"]
Audience = Literal["all", "local", "regional", "national"]
NotificationType = Literal["general", "weather", "community", "alert", "reminder", "achievement", "system"]
AlertSeverity = Literal["low", "medium", "high", "critical"]
AlertType = Literal["temperature", "precipitation", "wind", "humidity", "storm", "frost", "drought", "flood"]
ChatLanguage = Literal["en", "hi", "es", "fr", "ar", "zh"]
ChatTone = Literal["professional", "friendly", "technical", "simple"]
ChatContext = Literal["general", "crop-specific", "soil-focused", "pest-focused", "weather-focused"]

PHONE_PATTERN = r"^\+?[\d\s\-()]+$"


class LocationInput(BaseModel):
    coordinates: Optional[List[float]] = Field(None, min_length=2, max_length=2)
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zipCode: Optional[str] = None


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: str
    password: str = Field(..., min_length=6)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    location: Optional[LocationInput] = None


class LoginRequest(BaseModel):
    email: str
    password: str


class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = None


class ProfileInput(BaseModel):
    avatar: Optional[str] = None
    farmSize: Optional[str] = None
    crops: Optional[List[str]] = None
    experience: Optional[float] = Field(None, ge=0)
    language: Optional[str] = Field(None, min_length=2, max_length=2)


class UpdateProfileRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    location: Optional[LocationInput] = None
    profile: Optional[ProfileInput] = None
    preferences: Optional[Dict[str, Any]] = None
    farmSize: Optional[str] = None


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: str
    newPassword: str = Field(..., min_length=6)


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    password: str = Field(..., min_length=6)


class PostLocation(BaseModel):
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None


class PostImage(BaseModel):
    filename: Optional[str] = None
    url: Optional[str] = None
    caption: Optional[str] = None


class CreatePostRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, max_length=2000)
    category: PostCategory = "general"
    tags: Optional[Any] = None
    priority: Priority = "medium"
    targetAudience: Audience = "local"
    location: Optional[PostLocation] = None
    images: List[PostImage] = []
    expiresAt: Optional[datetime] = None


class UpdatePostRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    body: Optional[str] = Field(None, min_length=1, max_length=2000)
    category: Optional[PostCategory] = None
    tags: Optional[Any] = None
    priority: Optional[Priority] = None
    targetAudience: Optional[Audience] = None


class CommentRequest(BaseModel):
    content: Optional[str] = Field(None, max_length=500)


class ReplyRequest(BaseModel):
    content: Optional[str] = Field(None, max_length=300)


class ChatMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, max_length=1000)
    sessionId: Optional[str] = None
    language: ChatLanguage = "en"
    tone: Optional[ChatTone] = None


class SessionTitleRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=100)


class SessionSettingsRequest(BaseModel):
    language: Optional[ChatLanguage] = None
    tone: Optional[ChatTone] = None
    context: Optional[ChatContext] = None


class AffectedArea(BaseModel):
    type: Literal["Point", "Polygon"] = "Point"
    coordinates: List[Any]


class WeatherAlertCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=1000)
    severity: AlertSeverity
    type: AlertType
    affectedAreas: Optional[AffectedArea] = None
    recommendations: List[str] = []
    affectedCrops: List[str] = []
    expiresAt: Optional[datetime] = None
    isGlobal: bool = False


class NotificationCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=500)
    type: NotificationType = "general"
    priority: Priority = "medium"
    data: Optional[Dict[str, Any]] = None
    expiresAt: Optional[datetime] = None


class PushSubscriptionRequest(BaseModel):
    subscription: Optional[Dict[str, Any]] = None


class NotificationPreferencesUpdate(BaseModel):
    weather: Optional[bool] = None
    community: Optional[bool] = None
    alerts: Optional[bool] = None
    marketing: Optional[bool] = None


class FeedbackRequest(BaseModel):
    rating: Optional[int] = Field(None, ge=1, le=5)
    comments: Optional[str] = None
    correctedAnalysis: Optional[Dict[str, Any]] = None


class ShareRequest(BaseModel):
    userIds: List[str] = []
    makePublic: bool = False


class BatchAnalyzeRequest(BaseModel):
    analysisIds: Optional[Any] = None
