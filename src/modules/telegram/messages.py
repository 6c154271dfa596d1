"""User-facing chat messages."""

START_INSTRUCTIONS = (
    "Send a PNG file as a document to set your watermark. "
    "Send a photo or a video to get it back with the watermark applied. "
    "/reset removes the watermark."
)

WATERMARK_NOT_SET = "Watermark is not set"
WATERMARK_SAVED = "Watermark uploaded"
WATERMARK_REMOVED = "Watermark removed"
