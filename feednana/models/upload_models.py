# models/upload_models.py
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from enum import Enum


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class UploadStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ABORTED = "aborted"


class UploadSession(BaseModel):
    """Ledger entry for one initiated multipart upload."""
    key: str
    upload_id: str
    file_name: str
    file_size: int
    mime_type: str
    part_count: int
    status: UploadStatus = UploadStatus.PENDING
    created_at: datetime
    completed_at: Optional[datetime] = None


class FileInput(ApiModel):
    name: Optional[str] = None
    file_name: str
    file_size: int = Field(ge=0)
    mime_type: str


class UploadUrls(ApiModel):
    upload_id: str
    urls: List[str]
    key: str


class UploadPart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    part_number: int = Field(alias="PartNumber", ge=1)
    etag: str = Field(alias="ETag")

    def to_s3(self) -> dict:
        return {"PartNumber": self.part_number, "ETag": self.etag}


class CompleteUploadInput(ApiModel):
    key: str
    upload_id: str
    file_name: str
    file_size: int
    mime_type: str
    name: Optional[str] = None
    parts: List[UploadPart]


class InitiateUploadRequest(ApiModel):
    files: List[FileInput]
    recaptcha_token: Optional[str] = None


class CompleteUploadRequest(ApiModel):
    uploads: List[CompleteUploadInput]
    name: Optional[str] = None
    manifesto: str = ""
    disable_comments: bool = False
    unlisted: bool = False
    anonymous: bool = False


class AnonIdentity(ApiModel):
    anon_id: str
    anon_text_color: str
    anon_text_background: str


class FileOut(ApiModel):
    flavor: Literal["file"] = "file"
    id: int
    name: Optional[str] = None
    manifesto: str
    timestamp: datetime
    removed: bool
    unlisted: bool
    disable_comments: bool
    user_id: Optional[int] = None
    anon_id: str
    anon_text_color: str
    anon_text_background: str
    views: int
    file_name: str
    file_size: int
    mime_type: str
    hashed_file_name: str
    file_url: str
    thumbnail_url: Optional[str] = None
    album_id: Optional[int] = None
    karma: int = 0
    comment_count: int = 0


class AlbumOut(ApiModel):
    flavor: Literal["album"] = "album"
    id: int
    name: Optional[str] = None
    manifesto: str
    timestamp: datetime
    removed: bool
    unlisted: bool
    user_id: Optional[int] = None
    anon_id: str
    anon_text_color: str
    anon_text_background: str
    views: int
    files: List[FileOut] = []
    karma: int = 0
    comment_count: int = 0


class FileUploadResult(ApiModel):
    file: FileOut
    album: Optional[AlbumOut] = None


class VoteRequest(ApiModel):
    flavor: str
    content_id: int
    vote: int


class CommentRequest(ApiModel):
    flavor: str
    content_id: int
    text: str
    replies_to: Optional[int] = None
    anonymous: bool = False
    recaptcha_token: Optional[str] = None


class CommentOut(ApiModel):
    id: int
    timestamp: datetime
    flavor: str
    content_id: int
    replies_to: Optional[int] = None
    user_id: Optional[int] = None
    anon_id: str
    anon_text_color: str
    anon_text_background: str
    text: str
    removed: bool


class BrowseFilter(str, Enum):
    ALL = "all"
    FILES = "files"
    ALBUMS = "albums"


class BrowseResult(ApiModel):
    items: List[Annotated[Union[FileOut, AlbumOut], Field(discriminator="flavor")]] = []
    total: int
    has_more: bool


class RegisterRequest(ApiModel):
    username: str
    display_name: str
    email: str
    password: str
    recaptcha_token: Optional[str] = None


class LoginRequest(ApiModel):
    username: str
    password: str
    recaptcha_token: Optional[str] = None


class UserOut(ApiModel):
    id: int
    username: str
    display_name: str
    role: str
    created_at: datetime


class AuthResult(ApiModel):
    user: UserOut
    token: str
