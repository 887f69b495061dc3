from leadops.followups.models import FollowupJob, FollowupSettings

__all__ = ["FollowupJob", "FollowupSettings"]
