from enum import Enum


class UserRole(str, Enum):
    """Platform role, one per user."""
    STUDENT = "STUDENT"
    INSTRUCTOR = "INSTRUCTOR"
    ADMIN = "ADMIN"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class CourseStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"


class DoubtStatus(str, Enum):
    """Lifecycle of a doubt thread. Every state is reachable from every other."""
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DoubtSortBy(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    LAST_UPDATED = "last_updated"


class SocketEvent(str, Enum):
    """Event names on the live doubt channel, both directions."""
    # client → server
    JOIN_ROOM = "joinDoubtRoom"
    LEAVE_ROOM = "leaveDoubtRoom"
    SEND_MESSAGE = "sendDoubtMessage"
    TYPING = "userTypingInDoubt"
    # server → client
    JOINED_ROOM = "joinedDoubtRoomSuccess"
    LEFT_ROOM = "leftDoubtRoomSuccess"
    RECEIVE_MESSAGE = "receiveDoubtMessage"
    STATUS_UPDATED = "doubtStatusUpdated"
    TYPING_UPDATE = "userTypingUpdate"
    MESSAGE_DELETED = "doubtMessageDeleted"
    THREAD_DELETED = "doubtThreadDeleted"
    ERROR = "socketError"
