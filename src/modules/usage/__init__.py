from src.modules.usage.models import UsageRecord

__all__ = ["UsageRecord"]
