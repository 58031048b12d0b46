from .profile import Profile
from .game import Game
from .friend_edge import EdgeStatus, FriendEdge
from .activity_event import ActivityEvent, ActivityType
from .reaction import Reaction
from .comment import Comment
from .library_entry import LibraryEntry, LibraryStatus
from .progress_history import ProgressHistoryPoint

__all__ = [
    "Profile",
    "Game",
    "FriendEdge",
    "EdgeStatus",
    "ActivityEvent",
    "ActivityType",
    "Reaction",
    "Comment",
    "LibraryEntry",
    "LibraryStatus",
    "ProgressHistoryPoint",
]
