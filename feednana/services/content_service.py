# services/content_service.py
import logging
from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from feednana.exceptions import NotFoundError, ValidationError
from feednana.models.database import CONTENT_MODELS, Album, Comment, File, Vote
from feednana.models.upload_models import AlbumOut, AnonIdentity, BrowseFilter, BrowseResult, CommentOut, FileOut
from feednana.services.event_bus import ALBUM_UPDATED, COMMENTS_UPDATED, FILE_UPDATED, EventBus

logger = logging.getLogger(__name__)

COMMENT_FLAVORS = ("album", "file", "timeline", "user")
MAX_COMMENT_LENGTH = 1000
MAX_BROWSE_PAGE = 1000
MAX_BROWSE_LIMIT = 100
DEFAULT_BROWSE_LIMIT = 49


class ContentService:
    """Reads and small writes over the content tables; karma and comment counts are computed here."""

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus

    def karma(self, db: Session, flavor: str, content_id: int) -> int:
        total = db.scalar(
            select(func.coalesce(func.sum(Vote.vote), 0)).where(Vote.flavor == flavor, Vote.content_id == content_id)
        )
        return int(total or 0)

    def comment_count(self, db: Session, flavor: str, content_id: int) -> int:
        return db.scalar(
            select(func.count(Comment.id)).where(
                Comment.flavor == flavor,
                Comment.content_id == content_id,
                Comment.removed.is_(False),
            )
        )

    def user_vote(self, db: Session, user_id: Optional[int], flavor: str, content_id: int) -> Optional[int]:
        if not user_id:
            return None
        return db.scalar(
            select(Vote.vote).where(Vote.user_id == user_id, Vote.flavor == flavor, Vote.content_id == content_id)
        )

    def file_out(self, db: Session, file: File) -> FileOut:
        return FileOut.model_validate(file).model_copy(
            update={
                "karma": self.karma(db, "file", file.id),
                "comment_count": self.comment_count(db, "file", file.id),
            }
        )

    def album_files(self, db: Session, album_id: int) -> List[File]:
        return list(
            db.scalars(select(File).where(File.album_id == album_id, File.removed.is_(False)).order_by(File.id))
        )

    def album_out(self, db: Session, album: Album) -> AlbumOut:
        return AlbumOut.model_validate(album).model_copy(
            update={
                "files": [self.file_out(db, f) for f in self.album_files(db, album.id)],
                "karma": self.karma(db, "album", album.id),
                "comment_count": self.comment_count(db, "album", album.id),
            }
        )

    def get_file(self, db: Session, file_id: int) -> File:
        file = db.get(File, file_id)
        if not file:
            raise NotFoundError("File not found")
        file.views += 1
        db.commit()
        return file

    def get_album(self, db: Session, album_id: int) -> Album:
        album = db.get(Album, album_id)
        if not album:
            raise NotFoundError("Album not found")
        album.views += 1
        db.commit()
        return album

    def total_file_count(self, db: Session) -> int:
        return db.scalar(select(func.count(File.id)).where(File.removed.is_(False), File.unlisted.is_(False)))

    def browse(
        self,
        db: Session,
        page: int = 1,
        limit: int = DEFAULT_BROWSE_LIMIT,
        filter: BrowseFilter = BrowseFilter.ALL,
    ) -> BrowseResult:
        """
        Newest-first listing of public content: loose files (not in an album) and albums.

        Removed and unlisted items never appear. ``page`` is clamped to 1..1000 and
        ``limit`` to 1..100.
        """
        page = max(1, min(page or 1, MAX_BROWSE_PAGE))
        limit = max(1, min(limit or DEFAULT_BROWSE_LIMIT, MAX_BROWSE_LIMIT))
        skip = (page - 1) * limit

        file_where = (File.removed.is_(False), File.unlisted.is_(False), File.album_id.is_(None))
        album_where = (Album.removed.is_(False), Album.unlisted.is_(False))
        newest_files = select(File).where(*file_where).order_by(File.timestamp.desc(), File.id.desc())
        newest_albums = select(Album).where(*album_where).order_by(Album.timestamp.desc(), Album.id.desc())

        total = 0
        if filter in (BrowseFilter.ALL, BrowseFilter.FILES):
            total += db.scalar(select(func.count(File.id)).where(*file_where))
        if filter in (BrowseFilter.ALL, BrowseFilter.ALBUMS):
            total += db.scalar(select(func.count(Album.id)).where(*album_where))

        if filter == BrowseFilter.FILES:
            rows = list(db.scalars(newest_files.offset(skip).limit(limit)))
        elif filter == BrowseFilter.ALBUMS:
            rows = list(db.scalars(newest_albums.offset(skip).limit(limit)))
        else:
            # Any item on this page is within the newest skip + limit of its own kind
            window = skip + limit
            merged = list(db.scalars(newest_files.limit(window))) + list(db.scalars(newest_albums.limit(window)))
            merged.sort(key=lambda row: (row.timestamp, row.id), reverse=True)
            rows = merged[skip:skip + limit]

        items = [self.album_out(db, row) if isinstance(row, Album) else self.file_out(db, row) for row in rows]
        return BrowseResult(items=items, total=total, has_more=skip + len(items) < total)

    def vote(self, db: Session, user_id: Optional[int], flavor: str, content_id: int, value: int) -> bool:
        if not user_id:
            raise ValidationError("Must be logged in to vote")
        if value not in (1, -1, 0):
            raise ValidationError("Vote must be 1, -1, or 0")

        model = CONTENT_MODELS.get(flavor)
        target = db.get(model, content_id) if model is not None and flavor != "user" else None
        if target is None or getattr(target, "removed", False):
            raise ValidationError(f"Content with id {content_id} and flavor {flavor} does not exist or has been removed")

        existing = db.scalar(
            select(Vote).where(Vote.user_id == user_id, Vote.flavor == flavor, Vote.content_id == content_id)
        )
        if value == 0:
            if existing:
                db.delete(existing)
        elif existing:
            existing.vote = value
        else:
            db.add(Vote(user_id=user_id, flavor=flavor, content_id=content_id, vote=value))
        db.commit()

        if self.event_bus is not None:
            if flavor == "file":
                self.event_bus.publish(FILE_UPDATED, self.file_out(db, target).model_dump(by_alias=True))
            elif flavor == "album":
                self.event_bus.publish(ALBUM_UPDATED, self.album_out(db, target).model_dump(by_alias=True))
        return True

    def create_comment(
        self,
        db: Session,
        flavor: str,
        content_id: int,
        text: str,
        anon: AnonIdentity,
        replies_to: Optional[int] = None,
        user_id: Optional[int] = None,
    ) -> Comment:
        if len(text) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment must be {MAX_COMMENT_LENGTH} characters or less")
        if flavor not in COMMENT_FLAVORS:
            raise ValidationError(f"Invalid comment flavor: {flavor}")
        if db.get(CONTENT_MODELS[flavor], content_id) is None:
            raise NotFoundError(f"{flavor.capitalize()} not found")

        comment = Comment(
            flavor=flavor,
            content_id=content_id,
            text=text,
            replies_to=replies_to,
            user_id=user_id,
            anon_id=anon.anon_id,
            anon_text_color=anon.anon_text_color,
            anon_text_background=anon.anon_text_background,
        )
        db.add(comment)
        db.commit()

        if self.event_bus is not None:
            self.event_bus.publish(COMMENTS_UPDATED, CommentOut.model_validate(comment).model_dump(by_alias=True))
        return comment
