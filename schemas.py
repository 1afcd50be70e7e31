"""
Database Schemas for HackMate

Each Pydantic model represents a MongoDB collection. The collection name is the lowercase of the class name.
- User -> "user"
- Message -> "message"
- TeamConnection -> "teamconnection"
"""

from pydantic import BaseModel, Field, EmailStr
from typing import List, Literal, Optional
from datetime import datetime

TeamStatus = Literal["looking_for_team", "in_team", "not_looking"]
ExperienceLevel = Literal["beginner", "intermediate", "advanced"]
ConnectionStatus = Literal["pending", "accepted", "rejected", "cancelled"]

ACTIVE_STATUSES = ("pending", "accepted")

MAX_BIO_LENGTH = 500
MAX_PROJECT_DESCRIPTION_LENGTH = 300


class Project(BaseModel):
    description: str = Field("", max_length=MAX_PROJECT_DESCRIPTION_LENGTH)
    github: str = ""
    deployed: str = ""


class User(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = Field(None, description="Hashed password")
    photoUrl: Optional[str] = None
    onboardingCompleted: bool = False
    bio: str = Field("", max_length=MAX_BIO_LENGTH)
    skills: str = Field("", description="comma separated, free text")
    college: str = ""
    course: str = ""
    branch: str = ""
    semester: str = ""
    role: str = ""
    linkedIn: str = ""
    github: str = ""
    teamStatus: Optional[TeamStatus] = None
    experienceLevel: Optional[ExperienceLevel] = None
    projectInterests: List[str] = Field(default_factory=list)
    hackathonInterests: List[str] = Field(default_factory=list)
    preferredTeamSize: str = ""
    availabilityPreference: str = ""
    communicationPreference: List[str] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)
    createdAt: Optional[datetime] = None


class Message(BaseModel):
    senderId: str = Field(..., description="sender user's id as string")
    receiverId: str = Field(..., description="receiver user's id as string")
    content: str = Field(..., min_length=1)
    timestamp: datetime
    participants: List[str] = Field(..., min_length=2, max_length=2)


class TeamConnection(BaseModel):
    fromUserId: str
    toUserId: str
    status: ConnectionStatus = "pending"
    message: str = ""
    timestamp: datetime
    active: bool = True


# ---------- API bodies ----------

class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    bio: Optional[str] = Field(None, max_length=MAX_BIO_LENGTH)
    skills: Optional[str] = None
    college: Optional[str] = None
    course: Optional[str] = None
    branch: Optional[str] = None
    semester: Optional[str] = None
    role: Optional[str] = None
    linkedIn: Optional[str] = None
    github: Optional[str] = None
    teamStatus: Optional[TeamStatus] = None
    experienceLevel: Optional[ExperienceLevel] = None
    projectInterests: Optional[List[str]] = None
    hackathonInterests: Optional[List[str]] = None
    preferredTeamSize: Optional[str] = None
    availabilityPreference: Optional[str] = None
    communicationPreference: Optional[List[str]] = None
    projects: Optional[List[Project]] = None


class DiscoverFilters(BaseModel):
    projectInterest: str = "all"
    teamStatus: str = "all"
    experienceLevel: str = "all"


class UserOut(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    photoUrl: Optional[str] = None
    onboardingCompleted: bool = False
    bio: str = ""
    skills: str = ""
    college: str = ""
    course: str = ""
    branch: str = ""
    semester: str = ""
    role: str = ""
    linkedIn: str = ""
    github: str = ""
    teamStatus: Optional[str] = None
    experienceLevel: Optional[str] = None
    projectInterests: List[str] = []
    hackathonInterests: List[str] = []
    preferredTeamSize: str = ""
    availabilityPreference: str = ""
    communicationPreference: List[str] = []
    projects: List[Project] = []


class SendMessageRequest(BaseModel):
    receiverId: str
    content: str


class MessageOut(BaseModel):
    id: str
    senderId: str
    receiverId: str
    content: str
    timestamp: datetime


class ConversationSummary(BaseModel):
    partnerId: str
    name: str
    photoUrl: Optional[str] = None
    lastMessage: str
    lastMessageTime: datetime


class ConnectionRequest(BaseModel):
    toUserId: str
    message: str = ""


class ConnectionStatusUpdate(BaseModel):
    status: ConnectionStatus


class ConnectionOut(BaseModel):
    id: str
    fromUserId: str
    toUserId: str
    status: ConnectionStatus
    message: str = ""
    timestamp: datetime
