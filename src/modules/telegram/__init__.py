"""
Telegram Module

Update schemas, inbound event classification and the Bot API client used
to resolve, download and upload files.
"""
