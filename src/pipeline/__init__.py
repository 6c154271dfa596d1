"""
Watermark Pipeline

Inbound events are routed by the dispatcher; media requests then run on
the Celery thread pool through these stages:
1. Workspace - allocate per-request directories and pin the watermark
2. Resolve/Download - fetch the best variant from the Bot API
3. Composite - overlay the watermark with ffmpeg
4. Deliver - send the result back to the chat
5. Cleanup/Count - release the workspace and bump the usage counter
"""
