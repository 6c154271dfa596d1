"""
Telegram Update Schemas and Inbound Event Classification

Only the fields the bot reads are modelled; everything else in an update
is ignored. `classify_update` turns an update into one of the inbound event
kinds the dispatcher routes on.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict

from src.modules.media.models import InboundMedia, MediaKind, MediaVariant


class TelegramModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Chat(TelegramModel):
    id: int
    type: Optional[str] = None


class PhotoSize(TelegramModel):
    file_id: str
    file_unique_id: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None


class Video(TelegramModel):
    file_id: str
    file_unique_id: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration: Optional[int] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None


class Document(TelegramModel):
    file_id: str
    file_unique_id: Optional[str] = None
    file_name: Optional[str] = None
    mime_type: Optional[str] = None
    file_size: Optional[int] = None


class Message(TelegramModel):
    message_id: int
    chat: Chat
    text: Optional[str] = None
    photo: Optional[List[PhotoSize]] = None
    video: Optional[Video] = None
    document: Optional[Document] = None


class TelegramUpdate(TelegramModel):
    update_id: int
    message: Optional[Message] = None


# =============================================================================
# Inbound Events
# =============================================================================

class TextCommand(BaseModel):
    chat_id: int
    text: str

    @property
    def command(self) -> str:
        """The command word without arguments or a @botname suffix."""
        word = self.text.strip().split(maxsplit=1)[0] if self.text.strip() else ""
        return word.split("@", 1)[0]


class MediaSubmission(BaseModel):
    chat_id: int
    media: InboundMedia


class WatermarkDocument(BaseModel):
    chat_id: int
    file_id: str
    file_name: Optional[str] = None


InboundEvent = Union[TextCommand, MediaSubmission, WatermarkDocument]


def classify_update(update: TelegramUpdate) -> Optional[InboundEvent]:
    """Map an update to an inbound event, or None when there is nothing to do."""
    message = update.message
    if message is None:
        return None
    chat_id = message.chat.id

    if message.text is not None:
        return TextCommand(chat_id=chat_id, text=message.text)

    if message.photo:
        variants = [
            MediaVariant(
                file_id=size.file_id,
                file_unique_id=size.file_unique_id,
                file_size=size.file_size,
                width=size.width,
                height=size.height,
            )
            for size in message.photo
        ]
        return MediaSubmission(chat_id=chat_id, media=InboundMedia(kind=MediaKind.PHOTO, variants=variants))

    if message.video is not None:
        video = message.video
        variant = MediaVariant(
            file_id=video.file_id,
            file_unique_id=video.file_unique_id,
            file_size=video.file_size,
            width=video.width,
            height=video.height,
        )
        return MediaSubmission(chat_id=chat_id, media=InboundMedia(kind=MediaKind.VIDEO, variants=[variant]))

    if message.document is not None:
        return WatermarkDocument(
            chat_id=chat_id,
            file_id=message.document.file_id,
            file_name=message.document.file_name,
        )

    return None

